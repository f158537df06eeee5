"""
snippet-forge — runtime config loader.

File: src/snippet_forge/config/loader.py
Last updated: 2026-10-16

Purpose
- Build the effective snippet-forge config from layered sources.

What should be included in this file
- Layering: defaults, then ``snippets.toml``, then the selected profile, then
  ``SNIPPETS_*`` environment variables, then CLI overrides.
- A fixed table of environment bindings with per-field coercion.
- Relative storage/log paths rebased onto the config file's directory.
- Provider API key lookup through the env var named in config.

Functional requirements
- A missing config file is only an error when its path was given explicitly.
- Every layer is validated; embedded secrets never survive loading.

Non-functional requirements
- Same inputs, same output: no dependence on dict or environment ordering.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

from snippet_forge.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from snippet_forge.constants import DEFAULT_CONFIG_FILE

ENV_PREFIX: Final[str] = "SNIPPETS_"
PROFILE_ENV: Final[str] = f"{ENV_PREFIX}PROFILE"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_IN_MEMORY_DATABASE: Final[str] = ":memory:"

_Coercer = Callable[[str], object]


def _to_text(raw: str) -> object:
    return raw


def _to_int(raw: str) -> object:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _to_float(raw: str) -> object:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


def _to_bool(raw: str) -> object:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


# Every overridable field, by config path. Profiles and meta are file-only.
_ENV_FIELDS: Final[tuple[tuple[tuple[str, str], _Coercer], ...]] = (
    (("storage", "database_path"), _to_text),
    (("storage", "busy_timeout_ms"), _to_int),
    (("provider", "name"), _to_text),
    (("provider", "base_url"), _to_text),
    (("provider", "api_key_env"), _to_text),
    (("provider", "default_model"), _to_text),
    (("provider", "timeout_seconds"), _to_float),
    (("provider", "max_retries"), _to_int),
    (("regeneration", "wait_timeout_seconds"), _to_float),
    (("regeneration", "event_buffer_size"), _to_int),
    (("logging", "level"), _to_text),
    (("logging", "json"), _to_bool),
    (("logging", "log_dir"), _to_text),
)


class ConfigLoadError(ValueError):
    """Raised when a config source cannot be read or an override cannot be coerced."""


def env_var_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config. ``environ`` defaults to ``os.environ``."""

    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})
    path = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()

    from_file = _read_toml(path, required=config_path is not None)
    active_profile = _select_profile(profile, overrides.pop("profile", None), env)

    config = assert_valid_config(merge_config(default_config(), from_file))
    if active_profile is not None:
        config = apply_profile_overlay(config, active_profile)
    config = merge_config(config, _env_layer(env))
    config = merge_config(config, _cli_layer(overrides))
    config = assert_valid_config(config, active_profile=active_profile)

    return assert_valid_config(
        normalize_paths(config, base_dir=path.parent),
        active_profile=active_profile,
    )


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Rebase relative path fields, including those inside profiles, onto ``base_dir``."""

    rebased = merge_config({}, config)
    targets: list[dict[str, Any]] = [rebased]
    profiles = rebased.get("profiles")
    if isinstance(profiles, dict):
        targets.extend(overlay for _, overlay in sorted(profiles.items()) if isinstance(overlay, dict))

    for target in targets:
        for section, key in PATH_FIELDS:
            block = target.get(section)
            if isinstance(block, dict) and isinstance(block.get(key), str):
                block[key] = _rebase_path(block[key], base_dir)
    return rebased


def resolve_api_key(
    config: Mapping[str, object], environ: Mapping[str, str] | None = None
) -> str | None:
    """Return the stripped provider key from the env var named by ``provider.api_key_env``."""

    provider = config.get("provider")
    env_name = provider.get("api_key_env") if isinstance(provider, Mapping) else None
    if not isinstance(env_name, str):
        return None
    value = (os.environ if environ is None else environ).get(env_name, "").strip()
    return value or None


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Redacted copy safe to print or log."""

    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _select_profile(
    explicit: str | None, from_cli: object, environ: Mapping[str, str]
) -> str | None:
    if from_cli is not None and not isinstance(from_cli, str):
        raise ConfigLoadError("cli override 'profile' must be a string")
    for candidate in (explicit, from_cli, environ.get(PROFILE_ENV)):
        if candidate is not None:
            return candidate.strip() or None
    return None


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for (section, key), coerce in _ENV_FIELDS:
        name = env_var_name(section, key)
        raw = environ.get(name)
        if raw is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {section}.{key} {exc}") from exc
        layer.setdefault(section, {})[key] = value
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    """Expand dotted keys such as ``provider.default_model`` into nested sections."""

    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        node = layer
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[parts[-1]] = overrides[dotted]
    return layer


def _rebase_path(raw: str, base_dir: Path) -> str:
    if raw == _IN_MEMORY_DATABASE:
        return raw
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PROFILE_ENV",
    "dump_effective_config",
    "effective_config",
    "env_var_name",
    "load_config",
    "normalize_paths",
    "resolve_api_key",
]
