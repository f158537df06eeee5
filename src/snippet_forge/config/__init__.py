"""
snippet-forge config package public API.

File: src/snippet_forge/config/__init__.py
Last updated: 2026-10-16

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``snippets.toml`` + ``SNIPPETS_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from snippet_forge.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    PROFILE_ENV,
    ConfigLoadError,
    dump_effective_config,
    effective_config,
    env_var_name,
    load_config,
    normalize_paths,
    resolve_api_key,
)
from snippet_forge.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ProfileOverlay,
    SnippetForgeConfig,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "PROFILE_ENV",
    "ProfileOverlay",
    "SnippetForgeConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "effective_config",
    "env_var_name",
    "load_config",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "redact_config",
    "resolve_api_key",
    "validate_config",
]
