"""
snippet-forge — dependency wait gate

File: src/snippet_forge/control_plane/wait_gate.py
Last updated: 2026-10-16

Purpose
- Let message submission block until the snippets it references finish regenerating,
  without waiting on unrelated work.

What should be included in this file
- ``DependencyWaitGate.wait_for(names, timeout)`` backed by an ``asyncio.Future`` and a
  transient event bus subscription.

Functional requirements
- Returns immediately when none of the names is regenerating.
- A failure event for any awaited name rejects the whole wait with ``DependencyFailedError``.
- A timeout raises ``DependencyTimeoutError`` naming what was still pending.

Non-functional requirements
- The subscription is always removed, whatever the outcome.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from snippet_forge.constants import DEFAULT_WAIT_TIMEOUT_SECONDS
from snippet_forge.domain.events import EventType, RegenerationStatus
from snippet_forge.errors import DependencyFailedError, DependencyTimeoutError
from snippet_forge.utils.concurrency import run_with_timeout

if TYPE_CHECKING:
    from snippet_forge.control_plane.regeneration import RegenerationEngine
    from snippet_forge.domain.events import SnippetEvent
    from snippet_forge.observability.events import EventBus


class DependencyWaitGate:
    """Block callers on specific in-flight regenerations."""

    def __init__(
        self,
        engine: RegenerationEngine,
        event_bus: EventBus,
        *,
        default_timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        self._engine = engine
        self._event_bus = event_bus
        self._default_timeout_seconds = default_timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def wait_for(self, names: Iterable[str], timeout: float | None = None) -> None:
        """Wait until every name in ``names`` that is regenerating right now has succeeded."""
        wanted = frozenset(names)
        if not wanted & self._engine.regenerating:
            return

        timeout_seconds = self._default_timeout_seconds if timeout is None else timeout
        loop = asyncio.get_running_loop()
        done: asyncio.Future[None] = loop.create_future()
        pending: set[str] = set()

        def on_update(event: SnippetEvent) -> None:
            if done.done():
                return
            name = event.payload.get("name")
            if not isinstance(name, str) or name not in pending:
                return
            status = event.payload.get("status")
            if status == RegenerationStatus.FAILURE.value:
                error = event.payload.get("error")
                done.set_exception(
                    DependencyFailedError(name, error if isinstance(error, str) else None)
                )
            elif status == RegenerationStatus.SUCCESS.value:
                pending.discard(name)
                if not pending:
                    done.set_result(None)

        token = self._event_bus.subscribe(EventType.SNIPPET_REGENERATION_UPDATE, on_update)
        try:
            # Re-check after subscribing so a completion in between is not lost.
            pending.update(wanted & self._engine.regenerating)
            if not pending:
                return
            self._logger.info("dependency_wait_started", names=sorted(pending))
            try:
                await run_with_timeout(done, timeout_seconds)
            except TimeoutError as exc:
                self._logger.warning("dependency_wait_timed_out", names=sorted(pending))
                raise DependencyTimeoutError(sorted(pending), timeout_seconds) from exc
            self._logger.info("dependency_wait_finished", names=sorted(wanted))
        finally:
            self._event_bus.unsubscribe(token)
            if not done.done():
                done.cancel()


__all__ = ["DependencyWaitGate"]
