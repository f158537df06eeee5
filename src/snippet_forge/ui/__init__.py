"""UI package exports for the CLI and its rendering helpers."""

from snippet_forge.ui.cli import CLIError, build_parser, build_service, main, run_cli
from snippet_forge.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "build_service",
    "create_renderer",
    "main",
    "run_cli",
]
