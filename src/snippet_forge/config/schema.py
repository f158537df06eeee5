"""
snippet-forge — configuration schema and validation.

File: src/snippet_forge/config/schema.py
Last updated: 2026-10-16

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded API keys; credentials are only ever named through ``*_env`` keys.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from snippet_forge.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_DATABASE_PATH,
    DEFAULT_EVENT_BUFFER_SIZE,
    DEFAULT_MODEL,
    DEFAULT_WAIT_TIMEOUT_SECONDS,
    OPENROUTER_API_KEY_ENV,
    OPENROUTER_BASE_URL,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("debug", "ci")
PROVIDER_NAMES: Final[tuple[str, ...]] = ("openrouter",)
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# Whole words (after camelCase and punctuation splitting) that mark a key as secret.
_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"api", "apikey", "auth", "credential", "credentials", "key", "passwd", "private", "token"}
)
# Substrings that mark a key as secret wherever they appear.
_SECRET_FRAGMENTS: Final[tuple[str, ...]] = ("password", "secret", "token")
_REDACTED: Final[str] = "<redacted>"
_EMBEDDED_SECRET: Final[str] = (
    "embedded secret values are forbidden; use an *_env key with an env var name"
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("storage", "database_path"),
    ("logging", "log_dir"),
)

_SECTIONS: Final[tuple[str, ...]] = ("storage", "provider", "regeneration", "logging")


class MetaConfig(TypedDict):
    schema_version: int


class StorageConfig(TypedDict):
    database_path: str
    busy_timeout_ms: int


class ProviderConfig(TypedDict):
    name: Literal["openrouter"]
    base_url: str
    api_key_env: str
    default_model: str
    timeout_seconds: float
    max_retries: int


class RegenerationConfig(TypedDict):
    wait_timeout_seconds: float
    event_buffer_size: int


class LoggingSection(TypedDict):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    json: bool
    log_dir: NotRequired[str]


class ProfileOverlay(TypedDict, total=False):
    storage: dict[str, object]
    provider: dict[str, object]
    regeneration: dict[str, object]
    logging: dict[str, object]


class SnippetForgeConfig(TypedDict):
    meta: MetaConfig
    storage: StorageConfig
    provider: ProviderConfig
    regeneration: RegenerationConfig
    logging: LoggingSection
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[SnippetForgeConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "storage": {
        "database_path": DEFAULT_DATABASE_PATH.as_posix(),
        "busy_timeout_ms": 5000,
    },
    "provider": {
        "name": "openrouter",
        "base_url": OPENROUTER_BASE_URL,
        "api_key_env": OPENROUTER_API_KEY_ENV,
        "default_model": DEFAULT_MODEL,
        "timeout_seconds": 60.0,
        "max_retries": 2,
    },
    "regeneration": {
        "wait_timeout_seconds": DEFAULT_WAIT_TIMEOUT_SECONDS,
        "event_buffer_size": DEFAULT_EVENT_BUFFER_SIZE,
    },
    "logging": {
        "level": "INFO",
        "json": False,
    },
    "profiles": {
        "debug": {
            "logging": {"level": "DEBUG"},
        },
        "ci": {
            "logging": {"json": True},
            "provider": {"max_retries": 0},
            "regeneration": {"wait_timeout_seconds": 5.0},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)



@dataclass(frozen=True, slots=True)
class _Field:
    """How one scalar config value is checked and normalized."""

    kind: Literal["text", "path", "env", "url", "int", "float", "bool"]
    minimum: float | None = None
    choices: tuple[str, ...] = ()
    required: bool = True
    upper: bool = False


_META_FIELDS: Final[dict[str, _Field]] = {"schema_version": _Field("int", minimum=1)}

_FIELDS: Final[dict[str, dict[str, _Field]]] = {
    "storage": {
        "database_path": _Field("path"),
        "busy_timeout_ms": _Field("int", minimum=0),
    },
    "provider": {
        "name": _Field("text", choices=PROVIDER_NAMES),
        "base_url": _Field("url"),
        "api_key_env": _Field("env"),
        "default_model": _Field("text"),
        "timeout_seconds": _Field("float", minimum=0.001),
        "max_retries": _Field("int", minimum=0),
    },
    "regeneration": {
        "wait_timeout_seconds": _Field("float", minimum=0.001),
        "event_buffer_size": _Field("int", minimum=1),
    },
    "logging": {
        "level": _Field("text", choices=LOG_LEVELS, upper=True),
        "json": _Field("bool"),
        "log_dir": _Field("path", required=False),
    },
}


def default_config() -> SnippetForgeConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade snippets.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade snippet-forge"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """
    Deep-merge ``overlay`` onto a copy of ``base``.

    Nested mappings merge key by key; any other overlay value replaces what was there.
    Neither input is modified and the result shares no containers with them.
    """

    merged = {key: _detached(value) for key, value in base.items()}
    for key in sorted(overlay):
        value = overlay[key]
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = _detached(value)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    selected = (profile or "").strip()
    if not selected:
        return merge_config({}, config)

    profiles = config.get("profiles")
    if not isinstance(profiles, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )
    overlay = profiles.get(selected)
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(config, overlay), active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _object_at(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    _check_keys(root, {"meta", "profiles", *_SECTIONS}, {"meta", *_SECTIONS}, "", issues)
    normalized: dict[str, Any] = {}

    meta = _object_at(root["meta"], "meta", issues) if "meta" in root else None
    if meta is not None:
        normalized["meta"] = _check_section(meta, _META_FIELDS, "meta", issues, partial=False)
        version = normalized["meta"].get("schema_version")
        if version is not None and version != ConfigSchemaVersion:
            issues.add("meta.schema_version", migration_guidance(version))

    normalized.update(_check_sections(root, "", issues, partial=False))

    if "profiles" in root:
        profiles = _object_at(root["profiles"], "profiles", issues)
        if profiles is not None:
            normalized["profiles"] = _check_profiles(profiles, issues)

    selected = active_profile.strip() if isinstance(active_profile, str) else None
    if selected and selected not in normalized.get("profiles", {}):
        issues.add("profiles", f"profile {selected!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` with the values of secret-looking keys masked, at any depth."""

    if not isinstance(config, Mapping):
        return {}
    return {
        key: _REDACTED if _is_secret_key(key) else _redacted(value)
        for key, value in sorted(config.items(), key=lambda item: str(item[0]))
    }


def _check_sections(
    payload: Mapping[str, object], path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for section in _SECTIONS:
        if section not in payload:
            continue
        section_path = _join(path, section)
        block = _object_at(payload[section], section_path, issues)
        if block is not None:
            out[section] = _check_section(
                block, _FIELDS[section], section_path, issues, partial=partial
            )
    return out


def _check_section(
    payload: Mapping[str, object],
    fields: Mapping[str, _Field],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    required = () if partial else [key for key, field in fields.items() if field.required]
    _check_keys(payload, fields, required, path, issues)
    out: dict[str, Any] = {}
    for key, field in fields.items():
        if key not in payload:
            continue
        try:
            out[key] = _parse(payload[key], field)
        except ValueError as exc:
            issues.add(_join(path, key), str(exc))
    return out


def _check_profiles(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(payload):
        path = _join("profiles", name)
        if not _PROFILE_NAME_PATTERN.fullmatch(name):
            issues.add(path, f"profile name must match {_PROFILE_NAME_PATTERN.pattern}")
            continue
        overlay = _object_at(payload[name], path, issues)
        if overlay is not None:
            _check_keys(overlay, _SECTIONS, (), path, issues)
            out[name] = _check_sections(overlay, path, issues, partial=True)
    return out


def _check_keys(
    payload: Mapping[str, object],
    allowed: Collection[str],
    required: Collection[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(set(payload) - set(allowed)):
        issues.add(_join(path, key), _EMBEDDED_SECRET if _is_secret_key(key) else "unknown field")
    for key in sorted(set(required) - set(payload)):
        issues.add(_join(path, key), "missing required field")


def _parse(value: object, field: _Field) -> object:
    """Normalized ``value`` for ``field``; raises ``ValueError`` with the issue message."""

    got = type(value).__name__
    if field.kind == "bool":
        if not isinstance(value, bool):
            raise ValueError(f"expected boolean, got {got}")
        return value

    if field.kind in ("int", "float"):
        accepted = (int,) if field.kind == "int" else (int, float)
        if isinstance(value, bool) or not isinstance(value, accepted):
            expected = "integer" if field.kind == "int" else "number"
            raise ValueError(f"expected {expected}, got {got}")
        number = value if field.kind == "int" else float(value)
        if not math.isfinite(number):
            raise ValueError("must be finite")
        if field.minimum is not None and number < field.minimum:
            raise ValueError(f"must be >= {field.minimum}")
        return number

    if not isinstance(value, str):
        raise ValueError(f"expected string, got {got}")
    text = value.strip().upper() if field.upper else value.strip()
    if not text:
        raise ValueError("must not be empty")
    if field.kind == "path" and "\x00" in text:
        raise ValueError("must not contain NUL bytes")
    if field.kind == "env" and not _ENV_NAME_PATTERN.fullmatch(text):
        raise ValueError("must be an env var name (example: OPENROUTER_API_KEY)")
    if field.kind == "url":
        if not text.startswith(("https://", "http://")):
            raise ValueError("must be an http(s) URL")
        text = text.rstrip("/")
    if field.choices and text not in field.choices:
        raise ValueError(
            f"invalid value {text!r}; expected one of: {', '.join(sorted(field.choices))}"
        )
    return text


def _object_at(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    bad_keys = sorted({type(key).__name__ for key in value if not isinstance(key, str)})
    for type_name in bad_keys:
        issues.add(path, f"object key must be string, got {type_name}")
    return {key: item for key, item in value.items() if isinstance(key, str)}


def _is_secret_key(key: object) -> bool:
    spaced = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", str(key)).lower()
    words = [word for word in _NON_ALNUM.split(spaced) if word]
    if not words or words[-1] == "env":
        return False
    joined = "".join(words)
    return any(word in _SECRET_WORDS for word in words) or any(
        fragment in joined for fragment in _SECRET_FRAGMENTS
    )


def _redacted(value: object) -> object:
    if isinstance(value, Mapping):
        return redact_config(value)
    if isinstance(value, (list, tuple)):
        return [_redacted(item) for item in value]
    return value


def _detached(value: object) -> object:
    if isinstance(value, Mapping):
        return merge_config({}, value)
    return copy.deepcopy(value)


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "PROVIDER_NAMES",
    "ProfileOverlay",
    "SnippetForgeConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
