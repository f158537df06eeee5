"""
snippet-forge — package root

File: src/snippet_forge/__init__.py
Last updated: 2026-10-16

Purpose
- Snippet dependency resolution and incremental regeneration engine.

What should be included in this file
- Version export and the caller-facing entry points (scan, resolve, validate, find missing,
  dirty propagation, regeneration trigger, dependency wait, service facade).

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).

Non-functional requirements
- Must keep import time fast; provider SDKs are imported lazily.
"""

from __future__ import annotations

__version__ = "0.1.0"

from snippet_forge.control_plane import (
    DependencyWaitGate,
    DirtyPropagator,
    PassReport,
    RegenerationEngine,
)
from snippet_forge.domain.models import Snippet, SystemPrompt
from snippet_forge.references import (
    extract_references,
    find_missing,
    resolve,
    validate_no_cycles,
)
from snippet_forge.service import PreparedMessage, SnippetService

__all__ = [
    "DependencyWaitGate",
    "DirtyPropagator",
    "PassReport",
    "PreparedMessage",
    "RegenerationEngine",
    "Snippet",
    "SnippetService",
    "SystemPrompt",
    "__version__",
    "extract_references",
    "find_missing",
    "resolve",
    "validate_no_cycles",
]
