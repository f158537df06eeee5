"""Domain layer: the snippet entity, identifiers, and lifecycle events."""

from __future__ import annotations

from snippet_forge.domain.events import EventType, RegenerationStatus, SnippetEvent
from snippet_forge.domain.models import Snippet, SystemPrompt, validate_snippet_name

__all__ = [
    "EventType",
    "RegenerationStatus",
    "Snippet",
    "SnippetEvent",
    "SystemPrompt",
    "validate_snippet_name",
]
