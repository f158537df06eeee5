"""Domain event definitions, serialization, and payload redaction helpers."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from snippet_forge.domain import ids
from snippet_forge.domain.models import JSONValue, datetime_to_iso8601z

_SENSITIVE_KEY_TERMS = ("secret", "key", "password", "token", "credential")
_REDACTED_VALUE = "***REDACTED***"


class EventType(StrEnum):
    """Lifecycle events emitted by the regeneration engine and snippet service."""

    REGENERATION_STARTED = "regeneration.started"
    REGENERATION_COMPLETED = "regeneration.completed"
    REGENERATION_CYCLE_DETECTED = "regeneration.cycle_detected"
    SNIPPET_REGENERATION_UPDATE = "snippet.regeneration_update"

    SNIPPET_SAVED = "snippet.saved"
    SNIPPET_DELETED = "snippet.deleted"
    SNIPPETS_DIRTY_MARKED = "snippets.dirty_marked"


class RegenerationStatus(StrEnum):
    STARTED = "started"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(slots=True)
class SnippetEvent:
    """Serializable event envelope."""

    event_id: str
    event_type: EventType
    timestamp: datetime
    correlation_id: str | None
    payload: dict[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        self.event_type = _as_event_type(self.event_type, "SnippetEvent.event_type")
        self.timestamp = _as_utc_datetime(self.timestamp, "SnippetEvent.timestamp")
        if self.correlation_id is not None and not isinstance(self.correlation_id, str):
            raise ValueError("SnippetEvent.correlation_id: expected string or null")
        self.payload = _as_json_object(self.payload, "SnippetEvent.payload")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": datetime_to_iso8601z(self.timestamp),
            "correlation_id": self.correlation_id,
            "payload": _as_json_object(self.payload, "SnippetEvent.payload"),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> SnippetEvent:
        if not isinstance(data, dict):
            raise ValueError(f"SnippetEvent: expected object, got {type(data).__name__}")
        allowed = {"event_id", "event_type", "timestamp", "correlation_id", "payload"}
        unknown = sorted(key for key in data if key not in allowed)
        if unknown:
            raise ValueError(f"SnippetEvent: unexpected fields: {unknown}")
        missing = sorted(key for key in allowed - {"correlation_id"} if key not in data)
        if missing:
            raise ValueError(f"SnippetEvent: missing required fields: {missing}")
        event_id = data["event_id"]
        if not isinstance(event_id, str):
            raise ValueError("SnippetEvent.event_id: expected string")
        correlation_id = data.get("correlation_id")
        return cls(
            event_id=event_id,
            event_type=_as_event_type(data["event_type"], "SnippetEvent.event_type"),
            timestamp=_as_utc_datetime(data["timestamp"], "SnippetEvent.timestamp"),
            correlation_id=correlation_id if isinstance(correlation_id, str) else None,
            payload=_as_json_object(data["payload"], "SnippetEvent.payload"),
        )

    @classmethod
    def from_json(cls, raw: str) -> SnippetEvent:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"SnippetEvent: invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("SnippetEvent: JSON root must be an object")
        return cls.from_dict(parsed)


def redact_sensitive(event: SnippetEvent) -> SnippetEvent:
    """Return a new event with sensitive payload keys deeply redacted."""
    redacted_payload = _redact_value(event.payload, key_context=None)
    if not isinstance(redacted_payload, dict):
        raise ValueError("redacted payload must remain a JSON object")
    return SnippetEvent(
        event_id=event.event_id,
        event_type=event.event_type,
        timestamp=event.timestamp,
        correlation_id=event.correlation_id,
        payload=redacted_payload,
    )


def _as_event_type(value: object, path: str) -> EventType:
    if isinstance(value, EventType):
        return value
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string event type, got {type(value).__name__}")
    try:
        return EventType(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in EventType)
        raise ValueError(f"{path}: unsupported event type {value!r}; allowed: {allowed}") from exc


def _as_utc_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError as exc:
            raise ValueError(f"{path}: invalid ISO-8601 datetime: {value!r}") from exc
    else:
        raise ValueError(
            f"{path}: expected datetime or ISO-8601 string, got {type(value).__name__}"
        )
    if parsed.tzinfo is None or parsed.utcoffset() is None:
        raise ValueError(f"{path}: datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > 16:
        raise ValueError(f"{path}: JSON nesting too deep")
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: float value must be finite")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{idx}]", depth=depth + 1)
            for idx, item in enumerate(value)
        ]
    if isinstance(value, dict):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings")
            out[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        raise ValueError(f"{path}: expected object")
    return parsed


def _redact_value(value: JSONValue, key_context: str | None) -> JSONValue:
    if key_context is not None and any(term in key_context.lower() for term in _SENSITIVE_KEY_TERMS):
        return _REDACTED_VALUE
    if isinstance(value, list):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, dict):
        return {key: _redact_value(item, key_context=key) for key, item in value.items()}
    return value


__all__ = ["EventType", "RegenerationStatus", "SnippetEvent", "redact_sensitive"]
