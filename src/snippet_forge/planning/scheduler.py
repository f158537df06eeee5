"""Dependency-respecting processing order for snippet regeneration."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from heapq import heapify, heappop, heappush
from typing import TYPE_CHECKING

from snippet_forge.planning.dependency_graph import DependencyGraph

if TYPE_CHECKING:
    from snippet_forge.domain.models import Snippet


@dataclass(frozen=True, slots=True)
class ScheduleOrder:
    """Snippets placed referenced-before-referencing, plus names that could not be placed."""

    ordered: tuple[Snippet, ...]
    cyclic: tuple[str, ...]

    @property
    def has_cycles(self) -> bool:
        return bool(self.cyclic)


def topological_order(snippets: Iterable[Snippet]) -> ScheduleOrder:
    """
    Order ``snippets`` so every snippet follows the snippets its defining text references.

    Kahn's algorithm with a name-ordered ready heap keeps the result deterministic. References
    to names outside the collection impose no ordering. Snippets that never become ready
    (cycle members and anything downstream of a cycle) are reported in ``cyclic``.
    """
    by_name = {snippet.name: snippet for snippet in snippets}
    graph = DependencyGraph.from_snippets(by_name.values())

    indegree: dict[str, int] = {
        name: sum(1 for dep in graph.dependencies(name) if dep in by_name) for name in by_name
    }
    ready: list[str] = [name for name, degree in indegree.items() if degree == 0]
    heapify(ready)

    ordered: list[Snippet] = []
    while ready:
        name = heappop(ready)
        ordered.append(by_name[name])
        for dependent in graph.dependents(name):
            if dependent not in indegree:
                continue
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heappush(ready, dependent)

    placed = {snippet.name for snippet in ordered}
    cyclic = tuple(sorted(name for name in by_name if name not in placed))
    return ScheduleOrder(ordered=tuple(ordered), cyclic=cyclic)


def find_cycles(snippets: Iterable[Snippet]) -> tuple[tuple[str, ...], ...]:
    """Return canonical cycle paths across the collection for diagnostics."""
    return DependencyGraph.from_snippets(snippets).detect_cycles()


__all__ = ["ScheduleOrder", "find_cycles", "topological_order"]
