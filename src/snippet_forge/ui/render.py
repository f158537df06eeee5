"""Output rendering for the snippet-forge CLI.

File: src/snippet_forge/ui/render.py
Last updated: 2026-10-16

Purpose
- Provide a thin plain-text rendering layer for CLI output.

What should be included in this file
- CLIRenderer class with methods for common output patterns.
- Snippet, snippet listing and regeneration pass report views.

Functional requirements
- Output must be deterministic for a given store state.

Non-functional requirements
- No dependencies beyond the standard library.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

    from snippet_forge.control_plane.regeneration import PassReport
    from snippet_forge.domain.models import Snippet, SystemPrompt

_PREVIEW_LENGTH = 48


class CLIRenderer:
    """Plain-text CLI output renderer."""

    def __init__(self, *, verbose: bool = False, stream: TextIO | None = None) -> None:
        self.verbose = verbose
        self._stream = stream

    def _print(self, line: str = "") -> None:
        print(line, file=self._stream if self._stream is not None else sys.stdout)

    def kv(self, key: str, value: object) -> None:
        self._print(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._print(line)

    def section(self, title: str) -> None:
        self._print(f"\n{title}")

    def warning(self, text: str) -> None:
        self._print(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        self._print(f"  {_pad(list(headers))}")
        self._print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            self._print(f"  {_pad(list(row))}")

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        self.section("Next steps:")
        for step in steps:
            self._print(f"  $ {step}")


def snippet_status(snippet: Snippet) -> str:
    """Short state label: ``error`` beats ``dirty`` beats ``ok``."""

    if snippet.generation_error:
        return "error"
    if snippet.is_dirty:
        return "dirty"
    return "ok"


def preview(text: str, max_len: int = _PREVIEW_LENGTH) -> str:
    flattened = " ".join(text.split())
    if len(flattened) <= max_len:
        return flattened
    if max_len <= 3:
        return flattened[:max_len]
    return flattened[: max_len - 3] + "..."


def render_snippet(renderer: CLIRenderer, snippet: Snippet) -> None:
    renderer.kv("Name", f"@{snippet.name}")
    renderer.kv("Kind", "generated" if snippet.is_generated else "static")
    renderer.kv("Status", snippet_status(snippet))
    if snippet.is_generated:
        renderer.kv("Model", snippet.model)
        renderer.kv("Prompt", snippet.prompt)
    if snippet.generation_error:
        renderer.kv("Error", snippet.generation_error)
    if renderer.verbose:
        renderer.kv("Id", snippet.id)
        renderer.kv("Updated", snippet.updated_at.isoformat())
    renderer.section("Content:")
    renderer.text(snippet.content)


def render_snippet_table(renderer: CLIRenderer, snippets: Sequence[Snippet]) -> None:
    if not snippets:
        renderer.text("No snippets yet.")
        renderer.next_steps(['snippet-forge add greeting --content "Hello"'])
        return
    rows = [
        (
            f"@{snippet.name}",
            "generated" if snippet.is_generated else "static",
            snippet_status(snippet),
            preview(snippet.content),
        )
        for snippet in snippets
    ]
    renderer.table(("NAME", "KIND", "STATUS", "CONTENT"), rows)


def render_system_prompts(renderer: CLIRenderer, prompts: Sequence[SystemPrompt]) -> None:
    if not prompts:
        renderer.text("No system prompts yet.")
        return
    renderer.table(
        ("NAME", "PROMPT"),
        [(prompt.name, preview(prompt.prompt)) for prompt in prompts],
    )


def render_pass_report(renderer: CLIRenderer, report: PassReport | None) -> None:
    if report is None:
        renderer.text("A regeneration pass is already running.")
        return
    renderer.kv("Pass", report.pass_id)
    renderer.kv("Succeeded", len(report.succeeded))
    renderer.kv("Failed", len(report.failed))
    renderer.kv("Skipped", len(report.skipped))
    if report.succeeded and renderer.verbose:
        renderer.section("Regenerated:")
        renderer.items([f"@{name}" for name in report.succeeded])
    if report.failed:
        renderer.section("Failed:")
        renderer.items([f"@{name}" for name in report.failed])
    if report.skipped:
        renderer.section("Skipped (cycle):")
        renderer.items([f"@{name}" for name in report.skipped])
    if report.superseded:
        renderer.section("Left for the next pass (edited mid-flight):")
        renderer.items([f"@{name}" for name in report.superseded])
    if report.error:
        renderer.warning(report.error)


def create_renderer(*, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(verbose=verbose)


__all__ = [
    "CLIRenderer",
    "create_renderer",
    "preview",
    "render_pass_report",
    "render_snippet",
    "render_snippet_table",
    "render_system_prompts",
    "snippet_status",
]
