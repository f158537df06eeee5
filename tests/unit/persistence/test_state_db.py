"""
snippet-forge — unit tests for the SQLite state database

File: tests/unit/persistence/test_state_db.py
Last updated: 2026-10-16

Purpose
- Validate migrations, transactions and settings checks.
"""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from snippet_forge.constants import STATE_DB_SCHEMA_VERSION
from snippet_forge.persistence.state_db import StateDB, StateDBMigrationError

if TYPE_CHECKING:
    from pathlib import Path


def test_migrate_is_idempotent_and_records_history(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "nested" / "state.sqlite3")

    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.migrate() == STATE_DB_SCHEMA_VERSION

    rows = db.query_all("SELECT version, name, checksum FROM schema_versions ORDER BY version")
    assert [(row["version"], row["name"]) for row in rows] == [
        (1, "snippet_store"),
        (2, "system_prompt_store"),
    ]
    assert all(isinstance(row["checksum"], str) and len(row["checksum"]) == 64 for row in rows)


def test_checksum_mismatch_is_rejected(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state.sqlite3")
    db.migrate()
    db.execute("UPDATE schema_versions SET checksum = ? WHERE version = 1", ("0" * 64,))

    with pytest.raises(StateDBMigrationError, match="checksum mismatch"):
        db.migrate()


def test_newer_schema_is_rejected(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state.sqlite3")
    db.migrate()
    db.execute(
        "INSERT INTO schema_versions (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)",
        (STATE_DB_SCHEMA_VERSION + 1, "future", "f" * 64, "2026-01-01T00:00:00Z"),
    )

    with pytest.raises(StateDBMigrationError, match="newer"):
        db.migrate()


def test_transaction_rolls_back_on_error(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state.sqlite3")
    db.migrate()

    with pytest.raises(RuntimeError), db.transaction() as conn:
        db.execute(
            "INSERT INTO system_prompts (name, prompt, created_at, updated_at) "
            "VALUES ('tone', 'x', 'a', 'b')",
            conn=conn,
        )
        raise RuntimeError("abort")

    assert db.query_all("SELECT name FROM system_prompts") == []


def test_nested_transaction_uses_savepoint(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state.sqlite3")
    db.migrate()
    insert = (
        "INSERT INTO system_prompts (name, prompt, created_at, updated_at) VALUES (?, 'x', 'a', 'b')"
    )

    with db.transaction() as conn:
        db.execute(insert, ("outer",), conn=conn)
        with pytest.raises(sqlite3.IntegrityError), db.transaction(conn=conn) as inner:
            db.execute(insert, ("outer",), conn=inner)

    rows = db.query_all("SELECT name FROM system_prompts")
    assert rows == [{"name": "outer"}]


@pytest.mark.parametrize(
    "kwargs",
    [{"busy_timeout_ms": -1}, {"busy_retry_limit": -1}, {"busy_retry_backoff_ms": -1}],
)
def test_negative_settings_are_rejected(tmp_path: Path, kwargs: dict[str, int]) -> None:
    with pytest.raises(ValueError):
        StateDB(tmp_path / "state.sqlite3", **kwargs)
