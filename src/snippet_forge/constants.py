"""Stable constants shared across the snippet engine."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Reference token grammar: ``@`` followed by one or more name characters.
SNIPPET_NAME_PATTERN: Final[str] = r"[A-Za-z0-9_]+"
REFERENCE_PATTERN: Final[str] = r"@(" + SNIPPET_NAME_PATTERN + r")"
MAX_SNIPPET_NAME_LENGTH: Final[int] = 128

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 2

# Default runtime paths (relative to the config file directory unless overridden).
DEFAULT_CONFIG_FILE: Final[str] = "snippets.toml"
DEFAULT_DATABASE_PATH: Final[PurePosixPath] = PurePosixPath("state/snippets.sqlite3")

# Completion provider defaults.
OPENROUTER_BASE_URL: Final[str] = "https://openrouter.ai/api/v1"
OPENROUTER_API_KEY_ENV: Final[str] = "OPENROUTER_API_KEY"
DEFAULT_MODEL: Final[str] = "openai/gpt-4o-mini"

# Regeneration and dependency waiting.
DEFAULT_WAIT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_EVENT_BUFFER_SIZE: Final[int] = 512

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_DATABASE_PATH",
    "DEFAULT_EVENT_BUFFER_SIZE",
    "DEFAULT_MODEL",
    "DEFAULT_WAIT_TIMEOUT_SECONDS",
    "MAX_SNIPPET_NAME_LENGTH",
    "OPENROUTER_API_KEY_ENV",
    "OPENROUTER_BASE_URL",
    "REFERENCE_PATTERN",
    "SNIPPET_NAME_PATTERN",
    "STATE_DB_SCHEMA_VERSION",
]
