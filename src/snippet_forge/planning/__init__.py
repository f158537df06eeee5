"""
snippet-forge — planning layer

File: src/snippet_forge/planning/__init__.py
Last updated: 2026-10-16

Purpose
- Dependency graph derivation and regeneration ordering.

Functional requirements
- Graphs are recomputed from the current snippet collection; nothing is stored.

Non-functional requirements
- Must produce repeatable orderings for the same collection.
"""

from __future__ import annotations

from snippet_forge.planning.dependency_graph import DependencyGraph, build_reverse_graph
from snippet_forge.planning.scheduler import ScheduleOrder, find_cycles, topological_order

__all__ = [
    "DependencyGraph",
    "ScheduleOrder",
    "build_reverse_graph",
    "find_cycles",
    "topological_order",
]
