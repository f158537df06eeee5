"""Persistence layer: SQLite state database and snippet stores."""

from __future__ import annotations

from snippet_forge.persistence.repositories import (
    InMemorySnippetStore,
    InMemorySystemPromptStore,
    SnippetStore,
    SQLiteSnippetStore,
    SystemPromptRepo,
)
from snippet_forge.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "InMemorySnippetStore",
    "InMemorySystemPromptStore",
    "SQLiteSnippetStore",
    "SnippetStore",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "SystemPromptRepo",
]
