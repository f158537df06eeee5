"""Observability: event bus and structured logging."""

from __future__ import annotations

from snippet_forge.observability.events import DispatchError, EventBus, build_event
from snippet_forge.observability.logging import (
    LoggingConfig,
    configure_logging,
    correlation_scope,
    setup_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LoggingConfig",
    "build_event",
    "configure_logging",
    "correlation_scope",
    "setup_logging",
]
