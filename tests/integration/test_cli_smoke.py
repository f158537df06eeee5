"""
snippet-forge — CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py
Last updated: 2026-10-16

Purpose
- Enforce CLI behavior for `python -m snippet_forge`: exit codes, output and persisted state.
"""

from __future__ import annotations

import json
import os
import sqlite3
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


def _run_cli(project: Path, *args: str, stdin: str | None = None) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    env.pop("OPENROUTER_API_KEY", None)
    for name in tuple(env):
        if name.startswith("SNIPPETS_"):
            env.pop(name)
    return subprocess.run(
        [sys.executable, "-m", "snippet_forge", *args],
        cwd=project,
        input=stdin,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / "snippets.toml").write_text(
        '[storage]\ndatabase_path = "state/smoke.sqlite3"\n'
        "[provider]\nmax_retries = 0\n"
        '[logging]\nlevel = "WARNING"\n',
        encoding="utf-8",
    )
    return tmp_path


def test_add_resolve_and_persisted_rows(project: Path) -> None:
    added = _run_cli(project, "add", "tone", "--content", "Be concise.")
    assert added.returncode == 0, added.stderr
    assert "Added @tone" in added.stdout

    piped = _run_cli(project, "add", "intro", "--content", "-", stdin="Hello. @tone\n")
    assert piped.returncode == 0, piped.stderr

    resolved = _run_cli(project, "resolve", "Say: @intro", "--json")
    assert resolved.returncode == 0, resolved.stderr
    payload = json.loads(resolved.stdout)
    assert payload["text"] == "Say: Hello. Be concise.\n"

    with sqlite3.connect(project / "state" / "smoke.sqlite3") as conn:
        rows = conn.execute("SELECT name, is_dirty FROM snippets ORDER BY name").fetchall()
    assert rows == [("intro", 0), ("tone", 0)]


def test_missing_reference_exit_code_and_listing(project: Path) -> None:
    failed = _run_cli(project, "resolve", "Hi @ghost")
    assert failed.returncode == 1
    assert "Snippet '@ghost' not found." in failed.stderr

    listing = _run_cli(project, "missing", "Hi @ghost", "--json")
    assert listing.returncode == 0
    assert json.loads(listing.stdout) == {"command": "missing", "missing": ["ghost"]}


def test_generated_snippet_without_key_is_saved_with_error(project: Path) -> None:
    added = _run_cli(project, "add", "essay", "--prompt", "Write a haiku")
    assert added.returncode == 0, added.stderr
    assert "OpenRouter API key is missing." in added.stdout

    listed = _run_cli(project, "list")
    assert listed.returncode == 0
    assert "@essay" in listed.stdout
    assert "error" in listed.stdout


def test_editing_a_dependency_marks_generated_dependents(project: Path) -> None:
    assert _run_cli(project, "add", "topic", "--content", "tides").returncode == 0
    assert _run_cli(project, "add", "essay", "--prompt", "About @topic").returncode == 0

    updated = _run_cli(project, "update", "topic", "--content", "moons")
    assert updated.returncode == 0, updated.stderr

    shown = _run_cli(project, "show", "essay", "--json")
    snippet = json.loads(shown.stdout)["snippet"]
    assert snippet["is_dirty"] is False
    assert snippet["generation_error"] == "OpenRouter API key is missing."


def test_config_and_help(project: Path) -> None:
    config = _run_cli(project, "config", "--json")
    assert config.returncode == 0
    payload = json.loads(config.stdout)
    assert payload["config"]["storage"]["database_path"].endswith("state/smoke.sqlite3")

    help_result = _run_cli(project, "--help")
    assert help_result.returncode == 0
    assert "snippet-forge" in help_result.stdout


def test_usage_errors_exit_with_two(project: Path) -> None:
    result = _run_cli(project, "add")

    assert result.returncode == 2
    assert "usage:" in result.stderr
