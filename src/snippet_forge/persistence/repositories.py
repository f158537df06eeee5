"""
snippet-forge — snippet and system prompt repositories

File: src/snippet_forge/persistence/repositories.py
Last updated: 2026-10-16

Purpose
- Store interface consumed by the engine, plus SQLite-backed and in-memory implementations.

What should be included in this file
- ``SnippetStore`` protocol: load_all, get, save, save_many, delete.
- ``SQLiteSnippetStore`` persisting rows keyed by snippet id (renames update in place).
- ``InMemorySnippetStore`` for tests and ephemeral sessions.
- ``SystemPromptRepo`` for named system prompts.

Functional requirements
- Read-your-writes: a saved snippet is visible to the next ``load_all``.
- Name uniqueness is enforced on write and surfaced as ``SnippetConflictError``.

Non-functional requirements
- Returned snippets are copies; callers may mutate them freely.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from snippet_forge.domain.models import Snippet, SystemPrompt, datetime_to_iso8601z
from snippet_forge.errors import SnippetConflictError

if TYPE_CHECKING:
    from snippet_forge.persistence.state_db import RowValue, StateDB


@runtime_checkable
class SnippetStore(Protocol):
    """Durable, read-your-writes snippet collection."""

    def load_all(self) -> list[Snippet]: ...

    def get(self, name: str) -> Snippet | None: ...

    def save(self, snippet: Snippet) -> Snippet: ...

    def save_many(self, snippets: Sequence[Snippet]) -> list[Snippet]: ...

    def delete(self, name: str) -> bool: ...


class InMemorySnippetStore:
    """Dictionary-backed store keyed by snippet id."""

    def __init__(self, snippets: Iterable[Snippet] = ()) -> None:
        self._by_id: dict[str, Snippet] = {}
        for snippet in snippets:
            self.save(snippet)

    def load_all(self) -> list[Snippet]:
        return sorted((item.copy() for item in self._by_id.values()), key=lambda s: s.name)

    def get(self, name: str) -> Snippet | None:
        for snippet in self._by_id.values():
            if snippet.name == name:
                return snippet.copy()
        return None

    def save(self, snippet: Snippet) -> Snippet:
        for existing in self._by_id.values():
            if existing.name == snippet.name and existing.id != snippet.id:
                raise SnippetConflictError(snippet.name)
        self._by_id[snippet.id] = snippet.copy()
        return snippet

    def save_many(self, snippets: Sequence[Snippet]) -> list[Snippet]:
        return [self.save(snippet) for snippet in snippets]

    def delete(self, name: str) -> bool:
        for snippet_id, snippet in tuple(self._by_id.items()):
            if snippet.name == name:
                del self._by_id[snippet_id]
                return True
        return False


class InMemorySystemPromptStore:
    """Dictionary-backed system prompt store."""

    def __init__(self) -> None:
        self._by_name: dict[str, SystemPrompt] = {}

    def list(self) -> list[SystemPrompt]:
        return [replace(self._by_name[name]) for name in sorted(self._by_name)]

    def get(self, name: str) -> SystemPrompt | None:
        found = self._by_name.get(name)
        return None if found is None else replace(found)

    def save(self, prompt: SystemPrompt) -> SystemPrompt:
        self._by_name[prompt.name] = replace(prompt)
        return prompt

    def delete(self, name: str) -> bool:
        return self._by_name.pop(name, None) is not None


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.migrate()


_SNIPPET_COLUMNS = (
    "id, name, content, is_generated, prompt, model, generation_error, is_dirty, "
    "created_at, updated_at"
)

_UPSERT_SNIPPET_SQL = f"""
INSERT INTO snippets ({_SNIPPET_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    name = excluded.name,
    content = excluded.content,
    is_generated = excluded.is_generated,
    prompt = excluded.prompt,
    model = excluded.model,
    generation_error = excluded.generation_error,
    is_dirty = excluded.is_dirty,
    updated_at = excluded.updated_at
"""


class SQLiteSnippetStore(_BaseRepo):
    """Snippet store on top of ``StateDB``."""

    def load_all(self) -> list[Snippet]:
        rows = self._db.query_all(f"SELECT {_SNIPPET_COLUMNS} FROM snippets ORDER BY name ASC")
        return [_row_to_snippet(row) for row in rows]

    def get(self, name: str) -> Snippet | None:
        row = self._db.query_one(f"SELECT {_SNIPPET_COLUMNS} FROM snippets WHERE name = ?", (name,))
        return None if row is None else _row_to_snippet(row)

    def save(self, snippet: Snippet) -> Snippet:
        try:
            self._db.execute(_UPSERT_SNIPPET_SQL, _snippet_params(snippet))
        except sqlite3.IntegrityError as exc:
            if _is_name_conflict(exc):
                raise SnippetConflictError(snippet.name) from exc
            raise
        return snippet

    def save_many(self, snippets: Sequence[Snippet]) -> list[Snippet]:
        if not snippets:
            return []
        current: Snippet | None = None
        try:
            with self._db.transaction() as conn:
                for current in snippets:
                    self._db.execute(_UPSERT_SNIPPET_SQL, _snippet_params(current), conn=conn)
        except sqlite3.IntegrityError as exc:
            if _is_name_conflict(exc) and current is not None:
                raise SnippetConflictError(current.name) from exc
            raise
        return list(snippets)

    def delete(self, name: str) -> bool:
        return self._db.execute("DELETE FROM snippets WHERE name = ?", (name,)) > 0


class SystemPromptRepo(_BaseRepo):
    """Repository for named system prompts."""

    def list(self) -> list[SystemPrompt]:
        rows = self._db.query_all(
            "SELECT name, prompt, created_at, updated_at FROM system_prompts ORDER BY name ASC"
        )
        return [_row_to_system_prompt(row) for row in rows]

    def get(self, name: str) -> SystemPrompt | None:
        row = self._db.query_one(
            "SELECT name, prompt, created_at, updated_at FROM system_prompts WHERE name = ?",
            (name,),
        )
        return None if row is None else _row_to_system_prompt(row)

    def save(self, prompt: SystemPrompt) -> SystemPrompt:
        self._db.execute(
            """
            INSERT INTO system_prompts (name, prompt, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                prompt = excluded.prompt,
                updated_at = excluded.updated_at
            """,
            (
                prompt.name,
                prompt.prompt,
                datetime_to_iso8601z(prompt.created_at),
                datetime_to_iso8601z(prompt.updated_at),
            ),
        )
        return prompt

    def delete(self, name: str) -> bool:
        return self._db.execute("DELETE FROM system_prompts WHERE name = ?", (name,)) > 0


def _snippet_params(snippet: Snippet) -> tuple[str | int | None, ...]:
    return (
        snippet.id,
        snippet.name,
        snippet.content,
        int(snippet.is_generated),
        snippet.prompt,
        snippet.model,
        snippet.generation_error,
        int(snippet.is_dirty),
        datetime_to_iso8601z(snippet.created_at),
        datetime_to_iso8601z(snippet.updated_at),
    )


def _row_to_snippet(row: dict[str, RowValue]) -> Snippet:
    return Snippet.from_dict(
        {
            "id": row["id"],
            "name": row["name"],
            "content": row["content"],
            "is_generated": bool(row["is_generated"]),
            "prompt": row["prompt"],
            "model": row["model"],
            "generation_error": row["generation_error"],
            "is_dirty": bool(row["is_dirty"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }
    )


def _row_to_system_prompt(row: dict[str, RowValue]) -> SystemPrompt:
    return SystemPrompt(
        name=str(row["name"]),
        prompt=str(row["prompt"]),
        created_at=str(row["created_at"]),  # type: ignore[arg-type]
        updated_at=str(row["updated_at"]),  # type: ignore[arg-type]
    )


def _is_name_conflict(exc: sqlite3.IntegrityError) -> bool:
    return "snippets.name" in str(exc)


__all__ = [
    "InMemorySnippetStore",
    "InMemorySystemPromptStore",
    "SQLiteSnippetStore",
    "SnippetStore",
    "SystemPromptRepo",
]
