"""Snippet domain model with strict validation and canonical serialization."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import NoReturn

from snippet_forge.constants import MAX_SNIPPET_NAME_LENGTH, SNIPPET_NAME_PATTERN
from snippet_forge.domain import ids as domain_ids
from snippet_forge.errors import SnippetValidationError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_TEXT = 256 * 1024
_NAME_RE = re.compile(rf"^{SNIPPET_NAME_PATTERN}$")
_CLOCK_STEP = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True)
class Snippet:
    """A named unit of text, either authored directly or produced by a completion call."""

    id: str
    name: str
    content: str
    is_generated: bool
    created_at: datetime
    updated_at: datetime
    prompt: str | None = None
    model: str | None = None
    generation_error: str | None = None
    is_dirty: bool = False

    def __post_init__(self) -> None:
        try:
            domain_ids.validate_snippet_id(self.id)
        except ValueError as exc:
            _fail("Snippet.id", str(exc))
        self.name = validate_snippet_name(self.name, "Snippet.name")
        self.content = _as_text(self.content, "Snippet.content")
        self.is_generated = _as_bool(self.is_generated, "Snippet.is_generated")
        self.prompt = _as_optional_text(self.prompt, "Snippet.prompt")
        self.model = _as_optional_text(self.model, "Snippet.model")
        self.generation_error = _as_optional_text(
            self.generation_error, "Snippet.generation_error"
        )
        self.is_dirty = _as_bool(self.is_dirty, "Snippet.is_dirty")
        self.created_at = _as_datetime(self.created_at, "Snippet.created_at")
        self.updated_at = _as_datetime(self.updated_at, "Snippet.updated_at")
        if self.updated_at < self.created_at:
            _fail("Snippet.updated_at", "must not precede created_at")
        if self.is_generated:
            if self.prompt is None or not self.prompt.strip():
                _fail("Snippet.prompt", "generated snippets require a prompt")
            if self.model is None or not self.model.strip():
                _fail("Snippet.model", "generated snippets require a model")

    @classmethod
    def create(
        cls,
        name: str,
        *,
        content: str = "",
        is_generated: bool = False,
        prompt: str | None = None,
        model: str | None = None,
        now: datetime | None = None,
    ) -> Snippet:
        """Build a fresh, clean snippet with a new id and matching timestamps."""
        created = utc_now() if now is None else now
        return cls(
            id=domain_ids.generate_snippet_id(),
            name=name,
            content=content,
            is_generated=is_generated,
            prompt=prompt if is_generated else None,
            model=model if is_generated else None,
            created_at=created,
            updated_at=created,
        )

    @property
    def defining_text(self) -> str:
        """Text whose references define this snippet's dependencies."""
        if self.is_generated:
            return self.prompt or ""
        return self.content

    def touch(self, now: datetime | None = None) -> None:
        """Refresh ``updated_at`` without ever moving it backwards."""
        candidate = utc_now() if now is None else _as_datetime(now, "Snippet.updated_at")
        if candidate <= self.updated_at:
            candidate = self.updated_at + _CLOCK_STEP
        self.updated_at = candidate

    def copy(self) -> Snippet:
        return replace(self)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "name": self.name,
            "content": self.content,
            "is_generated": self.is_generated,
            "prompt": self.prompt,
            "model": self.model,
            "generation_error": self.generation_error,
            "is_dirty": self.is_dirty,
            "created_at": datetime_to_iso8601z(self.created_at),
            "updated_at": datetime_to_iso8601z(self.updated_at),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Snippet:
        parsed = _expect_object(
            data,
            "Snippet",
            required={"id", "name", "content", "is_generated", "created_at", "updated_at"},
            optional={"prompt", "model", "generation_error", "is_dirty"},
        )
        return cls(
            id=_as_text(parsed["id"], "Snippet.id"),
            name=validate_snippet_name(parsed["name"], "Snippet.name"),
            content=_as_text(parsed["content"], "Snippet.content"),
            is_generated=_as_bool(parsed["is_generated"], "Snippet.is_generated"),
            prompt=_as_optional_text(parsed.get("prompt"), "Snippet.prompt"),
            model=_as_optional_text(parsed.get("model"), "Snippet.model"),
            generation_error=_as_optional_text(
                parsed.get("generation_error"), "Snippet.generation_error"
            ),
            is_dirty=_as_bool(parsed.get("is_dirty", False), "Snippet.is_dirty"),
            created_at=_as_datetime(parsed["created_at"], "Snippet.created_at"),
            updated_at=_as_datetime(parsed["updated_at"], "Snippet.updated_at"),
        )

    @classmethod
    def from_json(cls, raw: str) -> Snippet:
        if not isinstance(raw, str):
            _fail("Snippet", f"expected JSON string, got {type(raw).__name__}")
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            _fail("Snippet", f"invalid JSON: {exc}")
        if not isinstance(parsed, dict):
            _fail("Snippet", "JSON root must be an object")
        return cls.from_dict(parsed)


@dataclass(slots=True)
class SystemPrompt:
    """Named system prompt whose text may reference snippets."""

    name: str
    prompt: str
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            _fail("SystemPrompt.name", "must be a non-empty string")
        self.name = self.name.strip()
        self.prompt = _as_text(self.prompt, "SystemPrompt.prompt")
        self.created_at = _as_datetime(self.created_at, "SystemPrompt.created_at")
        self.updated_at = _as_datetime(self.updated_at, "SystemPrompt.updated_at")

    @classmethod
    def create(cls, name: str, prompt: str, *, now: datetime | None = None) -> SystemPrompt:
        created = utc_now() if now is None else now
        return cls(name=name, prompt=prompt, created_at=created, updated_at=created)


def validate_snippet_name(value: object, path: str = "name") -> str:
    """Return ``value`` if it is a legal snippet name, else raise ``SnippetValidationError``."""
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if len(value) > MAX_SNIPPET_NAME_LENGTH:
        _fail(path, f"must be <= {MAX_SNIPPET_NAME_LENGTH} characters")
    if _NAME_RE.fullmatch(value) is None:
        _fail(path, f"must match {SNIPPET_NAME_PATTERN} (got {value!r})")
    return value


def datetime_to_iso8601z(value: datetime) -> str:
    normalized = _as_datetime(value, "datetime")
    return normalized.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _fail(path: str, message: str) -> NoReturn:
    raise SnippetValidationError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str],
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    parsed = {str(key): item for key, item in value.items()}
    unknown = sorted(key for key in parsed if key not in required and key not in optional)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")
    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")
    return parsed


def _as_text(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if len(value) > _MAX_TEXT:
        _fail(path, f"must be <= {_MAX_TEXT} characters")
    return value


def _as_optional_text(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_text(value, path)


def _as_bool(value: object, path: str) -> bool:
    if isinstance(value, bool):
        return value
    _fail(path, f"expected boolean, got {type(value).__name__}")


def _as_datetime(value: object, path: str) -> datetime:
    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware UTC")
    return parsed.astimezone(UTC)


__all__ = [
    "JSONValue",
    "Snippet",
    "SystemPrompt",
    "datetime_to_iso8601z",
    "utc_now",
    "validate_snippet_name",
]
