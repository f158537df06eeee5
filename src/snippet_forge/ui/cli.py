"""Command-line interface router for snippet-forge."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final, TypeVar

from snippet_forge.config import (
    ConfigLoadError,
    ConfigValidationError,
    assert_valid_config,
    effective_config,
    load_config,
    resolve_api_key,
)
from snippet_forge.constants import (
    DEFAULT_DATABASE_PATH,
    DEFAULT_EVENT_BUFFER_SIZE,
    DEFAULT_MODEL,
    DEFAULT_WAIT_TIMEOUT_SECONDS,
    OPENROUTER_BASE_URL,
)
from snippet_forge.errors import SnippetError
from snippet_forge.observability.events import EventBus
from snippet_forge.observability.logging import setup_logging
from snippet_forge.persistence import SQLiteSnippetStore, StateDB, SystemPromptRepo
from snippet_forge.providers import BackoffConfig, OpenRouterCompletionService
from snippet_forge.service import SnippetService
from snippet_forge.ui.render import (
    CLIRenderer,
    create_renderer,
    render_pass_report,
    render_snippet,
    render_snippet_table,
    render_system_prompts,
)

STDIN_MARKER: Final[str] = "-"

_T = TypeVar("_T")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="snippet-forge",
        description=(
            "snippet-forge — reusable text snippets with @references and generated content.\n\n"
            "Common workflows:\n"
            '  snippet-forge add tone --content "Be concise."\n'
            '  snippet-forge add intro --prompt "Write an intro. @tone"\n'
            '  snippet-forge resolve "@intro"\n'
            "  snippet-forge regenerate\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to snippets TOML config (default: ./snippets.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and debug logs.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # add -----------------------------------------------------------------
    add_parser = subparsers.add_parser(
        "add",
        parents=[common],
        help="Create a static or generated snippet",
        description=(
            "Create a snippet. Use --content for static text or --prompt for generated text.\n"
            "Pass '-' to read the value from stdin.\n\n"
            "Examples:\n"
            '  snippet-forge add tone --content "Be concise."\n'
            '  snippet-forge add intro --prompt "Introduce the product. @tone"\n'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_parser.add_argument("name", help="Snippet name (letters, digits, underscore)")
    add_body = add_parser.add_mutually_exclusive_group()
    add_body.add_argument("--content", default=None, help="Static snippet text")
    add_body.add_argument("--prompt", default=None, help="Prompt for a generated snippet")
    add_parser.add_argument("--model", default=None, help="Model for a generated snippet")
    add_parser.add_argument(
        "--no-generate",
        action="store_true",
        default=False,
        help="Store a generated snippet dirty instead of generating it now",
    )
    add_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    add_parser.set_defaults(handler=_cmd_add)

    # update --------------------------------------------------------------
    update_parser = subparsers.add_parser(
        "update",
        parents=[common],
        help="Edit or rename a snippet",
        description=(
            "Edit a snippet in place. Snippets that reference it are marked dirty and\n"
            "regenerated.\n\n"
            "Examples:\n"
            '  snippet-forge update tone --content "Be friendly."\n'
            "  snippet-forge update tone --rename voice\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    update_parser.add_argument("name", help="Current snippet name")
    update_parser.add_argument("--rename", dest="new_name", default=None, help="New name")
    update_parser.add_argument("--content", default=None, help="Replacement content")
    update_parser.add_argument("--prompt", default=None, help="Replacement prompt")
    update_parser.add_argument("--model", default=None, help="Replacement model")
    update_parser.add_argument(
        "--static",
        action="store_true",
        default=False,
        help="Convert a generated snippet into a static one",
    )
    update_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    update_parser.set_defaults(handler=_cmd_update)

    # delete --------------------------------------------------------------
    delete_parser = subparsers.add_parser(
        "delete",
        parents=[common],
        help="Delete a snippet",
    )
    delete_parser.add_argument("name", help="Snippet name")
    delete_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    delete_parser.set_defaults(handler=_cmd_delete)

    # list ----------------------------------------------------------------
    list_parser = subparsers.add_parser(
        "list",
        parents=[common],
        help="List snippets with their status",
    )
    list_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    list_parser.set_defaults(handler=_cmd_list)

    # show ----------------------------------------------------------------
    show_parser = subparsers.add_parser(
        "show",
        parents=[common],
        help="Show one snippet",
    )
    show_parser.add_argument("name", help="Snippet name")
    show_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    show_parser.set_defaults(handler=_cmd_show)

    # resolve -------------------------------------------------------------
    resolve_parser = subparsers.add_parser(
        "resolve",
        parents=[common],
        help="Resolve @references in a text block",
        description=(
            "Print text with every @reference substituted, after waiting for any\n"
            "in-flight regeneration of the snippets it uses.\n\n"
            "Examples:\n"
            '  snippet-forge resolve "Say hi. @tone"\n'
            "  cat draft.txt | snippet-forge resolve -\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    resolve_parser.add_argument("text", help="Text to resolve, or '-' for stdin")
    resolve_parser.add_argument(
        "--system", dest="system_prompt", default=None, help="System prompt name"
    )
    resolve_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    resolve_parser.set_defaults(handler=_cmd_resolve)

    # missing -------------------------------------------------------------
    missing_parser = subparsers.add_parser(
        "missing",
        parents=[common],
        help="List @references in a text block that have no snippet",
    )
    missing_parser.add_argument("text", help="Text to check, or '-' for stdin")
    missing_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    missing_parser.set_defaults(handler=_cmd_missing)

    # regenerate ----------------------------------------------------------
    regenerate_parser = subparsers.add_parser(
        "regenerate",
        parents=[common],
        help="Regenerate every dirty generated snippet",
    )
    regenerate_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    regenerate_parser.set_defaults(handler=_cmd_regenerate)

    # ask -----------------------------------------------------------------
    ask_parser = subparsers.add_parser(
        "ask",
        parents=[common],
        help="Resolve a message and send it to the completion provider",
        description=(
            "Resolve @references in a message and send it as a single-turn completion.\n"
            "Requires the API key env var named by provider.api_key_env.\n\n"
            "Examples:\n"
            '  snippet-forge ask "Summarize @intro"\n'
            '  snippet-forge ask "Review @intro" --system reviewer --model openai/gpt-4o\n'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ask_parser.add_argument("text", help="Message text, or '-' for stdin")
    ask_parser.add_argument("--model", default=None, help="Model override")
    ask_parser.add_argument(
        "--system", dest="system_prompt", default=None, help="System prompt name"
    )
    ask_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    ask_parser.set_defaults(handler=_cmd_ask)

    # system --------------------------------------------------------------
    system_parser = subparsers.add_parser(
        "system",
        help="Manage named system prompts",
    )
    system_commands = system_parser.add_subparsers(dest="system_command", required=True)

    system_set = system_commands.add_parser("set", parents=[common], help="Create or replace")
    system_set.add_argument("name", help="System prompt name")
    system_set.add_argument("text", help="Prompt text, or '-' for stdin")
    system_set.add_argument("--json", action="store_true", help="Emit JSON output")
    system_set.set_defaults(handler=_cmd_system_set)

    system_list = system_commands.add_parser("list", parents=[common], help="List prompts")
    system_list.add_argument("--json", action="store_true", help="Emit JSON output")
    system_list.set_defaults(handler=_cmd_system_list)

    system_delete = system_commands.add_parser("delete", parents=[common], help="Delete")
    system_delete.add_argument("name", help="System prompt name")
    system_delete.add_argument("--json", action="store_true", help="Emit JSON output")
    system_delete.set_defaults(handler=_cmd_system_delete)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file, env, and profile.\n"
            "Sensitive values are redacted.\n\n"
            "Examples:\n"
            "  snippet-forge config\n"
            "  snippet-forge config --json\n"
            "  snippet-forge config --profile ci\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    except SnippetError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    """Compatibility wrapper for main-module wiring."""

    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_add(args: argparse.Namespace) -> int:
    name = _require_str(getattr(args, "name", None), "name")
    prompt = _read_text_arg(getattr(args, "prompt", None))
    content = _read_text_arg(getattr(args, "content", None))
    model = _optional_str(getattr(args, "model", None))
    is_generated = prompt is not None
    if model is not None and not is_generated:
        raise CLIError("--model only applies to generated snippets (use --prompt)", exit_code=2)

    snippet = _run_with_service(
        args,
        lambda service: service.add(
            name,
            content=content or "",
            is_generated=is_generated,
            prompt=prompt,
            model=model,
            generate=not _flag(args, "no_generate"),
        ),
    )

    if _flag(args, "json"):
        _emit_json({"command": "add", "snippet": snippet.to_dict()})
        return 0

    renderer = _get_renderer(args)
    renderer.text(f"Added @{snippet.name}")
    if snippet.generation_error:
        renderer.warning(f"generation failed: {snippet.generation_error}")
    elif snippet.is_dirty:
        renderer.next_steps(["snippet-forge regenerate"])
    return 0


def _cmd_update(args: argparse.Namespace) -> int:
    name = _require_str(getattr(args, "name", None), "name")
    new_name = _optional_str(getattr(args, "new_name", None))
    content = _read_text_arg(getattr(args, "content", None))
    prompt = _read_text_arg(getattr(args, "prompt", None))
    model = _optional_str(getattr(args, "model", None))
    make_static = _flag(args, "static")
    if make_static and (prompt is not None or model is not None):
        raise CLIError("--static cannot be combined with --prompt or --model", exit_code=2)
    is_generated: bool | None = None
    if make_static:
        is_generated = False
    elif prompt is not None:
        is_generated = True

    snippet = _run_with_service(
        args,
        lambda service: service.update(
            name,
            new_name=new_name,
            content=content,
            prompt=prompt,
            model=model,
            is_generated=is_generated,
        ),
    )

    if _flag(args, "json"):
        _emit_json({"command": "update", "snippet": snippet.to_dict()})
        return 0

    renderer = _get_renderer(args)
    if snippet.name != name:
        renderer.text(f"Renamed @{name} to @{snippet.name}")
    else:
        renderer.text(f"Updated @{snippet.name}")
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    name = _require_str(getattr(args, "name", None), "name")
    _run_with_service(args, lambda service: service.delete(name))

    if _flag(args, "json"):
        _emit_json({"command": "delete", "name": name})
        return 0
    _get_renderer(args).text(f"Deleted @{name}")
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    snippets = _open_service(args).list()

    if _flag(args, "json"):
        _emit_json({"command": "list", "snippets": [snippet.to_dict() for snippet in snippets]})
        return 0
    render_snippet_table(_get_renderer(args), snippets)
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    name = _require_str(getattr(args, "name", None), "name")
    snippet = _open_service(args).get(name)
    if snippet is None:
        raise CLIError(f"Snippet '@{name}' not found.", exit_code=1)

    if _flag(args, "json"):
        _emit_json({"command": "show", "snippet": snippet.to_dict()})
        return 0
    render_snippet(_get_renderer(args), snippet)
    return 0


def _cmd_resolve(args: argparse.Namespace) -> int:
    text = _require_text_arg(getattr(args, "text", None), "text")
    system_prompt = _optional_str(getattr(args, "system_prompt", None))
    prepared = _run_with_service(
        args,
        lambda service: service.prepare_message(text, system_prompt_name=system_prompt),
    )

    if _flag(args, "json"):
        _emit_json({"command": "resolve", "system": prepared.system, "text": prepared.user})
        return 0

    renderer = _get_renderer(args)
    if prepared.system is not None:
        renderer.kv("System", prepared.system)
        renderer.section("Message:")
    renderer.text(prepared.user)
    return 0


def _cmd_missing(args: argparse.Namespace) -> int:
    text = _require_text_arg(getattr(args, "text", None), "text")
    missing = _open_service(args).missing_references(text)

    if _flag(args, "json"):
        _emit_json({"command": "missing", "missing": missing})
        return 0

    renderer = _get_renderer(args)
    if not missing:
        renderer.text("All references resolve.")
        return 0
    renderer.text("Missing snippets:")
    renderer.items([f"@{name}" for name in missing])
    return 0


def _cmd_regenerate(args: argparse.Namespace) -> int:
    report = _run_with_service(args, lambda service: service.regenerate())

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "regenerate",
                "report": report.to_dict() if report is not None else None,
            }
        )
    else:
        render_pass_report(_get_renderer(args), report)
    return 0 if report is None or report.ok else 1


def _cmd_ask(args: argparse.Namespace) -> int:
    text = _require_text_arg(getattr(args, "text", None), "text")
    model = _optional_str(getattr(args, "model", None))
    system_prompt = _optional_str(getattr(args, "system_prompt", None))
    reply = _run_with_service(
        args,
        lambda service: service.submit_message(text, model, system_prompt_name=system_prompt),
    )

    if _flag(args, "json"):
        _emit_json({"command": "ask", "reply": reply})
        return 0
    _get_renderer(args).text(reply)
    return 0


def _cmd_system_set(args: argparse.Namespace) -> int:
    name = _require_str(getattr(args, "name", None), "name")
    text = _require_text_arg(getattr(args, "text", None), "text")
    record = _open_service(args).save_system_prompt(name, text)

    if _flag(args, "json"):
        _emit_json({"command": "system.set", "name": record.name, "prompt": record.prompt})
        return 0
    _get_renderer(args).text(f"Saved system prompt {record.name}")
    return 0


def _cmd_system_list(args: argparse.Namespace) -> int:
    prompts = _open_service(args).list_system_prompts()

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "system.list",
                "system_prompts": [
                    {"name": prompt.name, "prompt": prompt.prompt} for prompt in prompts
                ],
            }
        )
        return 0
    render_system_prompts(_get_renderer(args), prompts)
    return 0


def _cmd_system_delete(args: argparse.Namespace) -> int:
    name = _require_str(getattr(args, "name", None), "name")
    if not _open_service(args).delete_system_prompt(name):
        raise CLIError(f"System prompt '{name}' not found.", exit_code=1)

    if _flag(args, "json"):
        _emit_json({"command": "system.delete", "name": name})
        return 0
    _get_renderer(args).text(f"Deleted system prompt {name}")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = effective_config(config)

    payload: dict[str, object] = {
        "command": "config",
        "active_profile": profile,
        "config": redacted,
    }

    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(verbose=_flag(args, "verbose"))


# ---------------------------------------------------------------------------
# Helpers — config and service wiring
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, object]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))

    try:
        loaded = load_config(config_path, profile=profile)
        validated = assert_valid_config(loaded, active_profile=profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    return {key: value for key, value in validated.items()}


def _open_service(args: argparse.Namespace) -> SnippetService:
    config = _load_effective_config(args)
    logging_section = _section(config, "logging")
    setup_logging(logging_section, verbose=_flag(args, "verbose"))
    return build_service(config)


def build_service(config: Mapping[str, object]) -> SnippetService:
    """Wire a ``SnippetService`` from an effective config mapping."""

    storage = _section(config, "storage")
    provider = _section(config, "provider")
    regeneration = _section(config, "regeneration")

    state_db = StateDB(
        Path(str(storage.get("database_path", DEFAULT_DATABASE_PATH.as_posix()))),
        busy_timeout_ms=_non_negative_int(storage.get("busy_timeout_ms", 5000)),
    )
    completion = OpenRouterCompletionService(
        base_url=str(provider.get("base_url") or OPENROUTER_BASE_URL),
        timeout_seconds=_positive_float(provider.get("timeout_seconds"), 60.0),
        backoff=BackoffConfig(max_retries=_non_negative_int(provider.get("max_retries", 2))),
    )
    buffer_size = _non_negative_int(
        regeneration.get("event_buffer_size", DEFAULT_EVENT_BUFFER_SIZE)
    )
    event_bus = EventBus(buffer_size=buffer_size or DEFAULT_EVENT_BUFFER_SIZE)
    return SnippetService(
        SQLiteSnippetStore(state_db),
        completion,
        resolve_api_key(config),
        event_bus=event_bus,
        system_prompts=SystemPromptRepo(state_db),
        default_model=str(provider.get("default_model") or DEFAULT_MODEL),
        wait_timeout_seconds=_positive_float(
            regeneration.get("wait_timeout_seconds"), DEFAULT_WAIT_TIMEOUT_SECONDS
        ),
    )


def _run_with_service(
    args: argparse.Namespace,
    operation: Callable[[SnippetService], Awaitable[_T]],
) -> _T:
    """Run one async service operation, then let scheduled regeneration finish."""

    service = _open_service(args)

    async def runner() -> _T:
        try:
            return await operation(service)
        finally:
            await service.drain()

    return asyncio.run(runner())


def _section(config: Mapping[str, object], name: str) -> dict[str, object]:
    value = config.get(name)
    if isinstance(value, Mapping):
        return {str(key): item for key, item in value.items()}
    return {}


# ---------------------------------------------------------------------------
# Helpers — argument parsing
# ---------------------------------------------------------------------------


def _read_text_arg(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid text argument", exit_code=2)
    if value == STDIN_MARKER:
        return sys.stdin.read()
    return value


def _require_text_arg(value: object, name: str) -> str:
    text = _read_text_arg(value)
    if text is None:
        raise CLIError(f"invalid {name}: expected text", exit_code=2)
    return text


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=2)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=2)
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=2)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name, False)
    return bool(value)


def _non_negative_int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(0, value)


def _positive_float(value: object, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    parsed = float(value)
    return parsed if parsed > 0.0 else default


__all__ = [
    "CLIError",
    "build_parser",
    "build_service",
    "main",
    "run_cli",
]


if __name__ == "__main__":
    raise SystemExit(run_cli())
