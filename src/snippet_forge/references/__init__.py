"""Reference scanning and resolution."""

from __future__ import annotations

from snippet_forge.errors import (
    SnippetCycleError,
    SnippetNotFoundError,
    SnippetResolutionError,
)
from snippet_forge.references.resolver import (
    build_index,
    find_missing,
    resolve,
    substituted_names,
    validate_no_cycles,
)
from snippet_forge.references.scanner import (
    extract_references,
    iter_references,
    ordered_references,
)

__all__ = [
    "SnippetCycleError",
    "SnippetNotFoundError",
    "SnippetResolutionError",
    "build_index",
    "extract_references",
    "find_missing",
    "iter_references",
    "ordered_references",
    "resolve",
    "substituted_names",
    "validate_no_cycles",
]
