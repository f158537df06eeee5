"""
snippet-forge — in-process CLI tests

File: tests/unit/ui/test_cli.py
Last updated: 2026-10-16

Purpose
- Validate argument routing, JSON output and exit codes against a temporary SQLite store.

Functional requirements
- Offline; commands that would call the provider are exercised only up to the missing-key path.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from snippet_forge.config import ConfigLoadError
from snippet_forge.errors import SnippetNotFoundError
from snippet_forge.main import ExitCode, cli_entrypoint, exit_code_for
from snippet_forge.providers.base import ProviderServiceError
from snippet_forge.ui.cli import build_parser, run_cli

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    for name in ("SNIPPETS_PROFILE", "SNIPPETS_STORAGE_DATABASE_PATH"):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "snippets.toml").write_text(
        '[storage]\ndatabase_path = "state/test.sqlite3"\n[provider]\nmax_retries = 0\n',
        encoding="utf-8",
    )
    return tmp_path


def _json(capsys: pytest.CaptureFixture[str], *argv: str) -> tuple[int, dict[str, object]]:
    code = run_cli([*argv, "--json"])
    out = capsys.readouterr().out.strip().splitlines()
    return code, json.loads(out[-1])


def test_parser_routes_nested_system_commands() -> None:
    args = build_parser().parse_args(["system", "set", "tone", "Be brief", "--verbose"])

    assert args.command == "system"
    assert args.system_command == "set"
    assert args.verbose is True
    assert callable(args.handler)


def test_parser_rejects_content_with_prompt() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["add", "x", "--content", "a", "--prompt", "b"])


def test_add_list_show_resolve_roundtrip(capsys: pytest.CaptureFixture[str]) -> None:
    code, added = _json(capsys, "add", "tone", "--content", "Be concise.")
    assert code == 0
    assert added["snippet"]["name"] == "tone"  # type: ignore[index]

    run_cli(["add", "greeting", "--content", "Hello. @tone"])
    capsys.readouterr()

    code, listed = _json(capsys, "list")
    assert [item["name"] for item in listed["snippets"]] == ["greeting", "tone"]  # type: ignore[union-attr]

    code, resolved = _json(capsys, "resolve", "Say: @greeting")
    assert code == 0
    assert resolved == {"command": "resolve", "system": None, "text": "Say: Hello. Be concise."}

    assert run_cli(["show", "greeting"]) == 0
    assert "Content:" in capsys.readouterr().out


def test_resolve_with_missing_reference_exits_with_snippet_error(
    capsys: pytest.CaptureFixture[str],
) -> None:
    code = run_cli(["resolve", "Hi @nobody"])

    assert code == 1
    assert "Snippet '@nobody' not found." in capsys.readouterr().err


def test_missing_lists_unknown_names(capsys: pytest.CaptureFixture[str]) -> None:
    run_cli(["add", "known", "--content", "k"])
    capsys.readouterr()

    code, payload = _json(capsys, "missing", "@known @ghost")

    assert code == 0
    assert payload["missing"] == ["ghost"]


def test_generated_add_without_key_records_error(capsys: pytest.CaptureFixture[str]) -> None:
    code, payload = _json(capsys, "add", "essay", "--prompt", "Write something")

    assert code == 0
    snippet = payload["snippet"]
    assert snippet["generation_error"] == "OpenRouter API key is missing."  # type: ignore[index]


def test_deferred_generation_runs_before_the_command_exits(
    capsys: pytest.CaptureFixture[str],
) -> None:
    code, added = _json(capsys, "add", "essay", "--prompt", "Write about @topic", "--no-generate")
    assert code == 0
    assert added["snippet"]["is_dirty"] is True  # type: ignore[index]

    code, shown = _json(capsys, "show", "essay")
    snippet = shown["snippet"]
    assert snippet["is_dirty"] is False  # type: ignore[index]
    assert snippet["generation_error"] == "Snippet '@topic' not found."  # type: ignore[index]

    code, payload = _json(capsys, "regenerate")
    assert code == 0
    assert payload["report"]["failed"] == []  # type: ignore[index]


def test_model_without_prompt_is_a_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["add", "x", "--content", "a", "--model", "m"]) == 2
    assert "--model only applies" in capsys.readouterr().err


def test_update_rename_and_delete(capsys: pytest.CaptureFixture[str]) -> None:
    run_cli(["add", "old", "--content", "text"])
    capsys.readouterr()

    code, payload = _json(capsys, "update", "old", "--rename", "new")
    assert code == 0
    assert payload["snippet"]["name"] == "new"  # type: ignore[index]

    assert run_cli(["delete", "new"]) == 0
    assert run_cli(["delete", "new"]) == 1


def test_system_prompt_commands(capsys: pytest.CaptureFixture[str]) -> None:
    run_cli(["add", "style", "--content", "brief"])
    assert run_cli(["system", "set", "tone", "Be @style"]) == 0
    capsys.readouterr()

    code, listed = _json(capsys, "system", "list")
    assert listed["system_prompts"] == [{"name": "tone", "prompt": "Be @style"}]

    code, resolved = _json(capsys, "resolve", "Hi", "--system", "tone")
    assert resolved["system"] == "Be brief"

    assert run_cli(["system", "delete", "tone"]) == 0
    assert run_cli(["system", "delete", "tone"]) == 1


def test_config_output_is_redacted_json(capsys: pytest.CaptureFixture[str]) -> None:
    code, payload = _json(capsys, "config", "--profile", "ci")

    assert code == 0
    assert payload["active_profile"] == "ci"
    config = payload["config"]
    assert config["provider"]["max_retries"] == 0  # type: ignore[index]
    assert config["provider"]["api_key_env"] == "OPENROUTER_API_KEY"  # type: ignore[index]


def test_bad_config_exits_with_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "snippets.toml").write_text("[provider]\nmax_retries = -3\n", encoding="utf-8")

    assert run_cli(["list"]) == 2
    assert "provider.max_retries" in capsys.readouterr().err


def test_entrypoint_maps_exit_codes(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["list"]) == ExitCode.SUCCESS
    assert cli_entrypoint(["show", "ghost"]) == ExitCode.SNIPPET_ERROR
    assert cli_entrypoint(["bogus-command"]) == ExitCode.CONFIG_ERROR


def _chained(outer: Exception, inner: BaseException) -> Exception:
    try:
        raise outer from inner
    except Exception as exc:  # noqa: BLE001
        return exc


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (SnippetNotFoundError("ghost"), ExitCode.SNIPPET_ERROR),
        (ConfigLoadError("bad toml"), ExitCode.CONFIG_ERROR),
        (ProviderServiceError("down"), ExitCode.PROVIDER_ERROR),
        (PermissionError("denied"), ExitCode.CONFIG_ERROR),
        (_chained(RuntimeError("wrapped"), ProviderServiceError("down")), ExitCode.PROVIDER_ERROR),
        (ModuleNotFoundError("no openai", name="openai"), ExitCode.PROVIDER_ERROR),
        (RuntimeError("boom"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_exit_code_routing_follows_the_cause_chain(
    exc: BaseException, expected: ExitCode
) -> None:
    assert exit_code_for(exc) is expected
