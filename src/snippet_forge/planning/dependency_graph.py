"""Derived snippet dependency graph, rebuilt from the collection on every call."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import TYPE_CHECKING

from snippet_forge.references.scanner import extract_references

if TYPE_CHECKING:
    from snippet_forge.domain.models import Snippet


class DependencyGraph:
    """
    Directed graph with an edge ``dependency -> dependent`` for every reference.

    Referenced names that have no snippet are still tracked as nodes so that deleting a
    snippet can reach whatever used to reference it.
    """

    __slots__ = ("_defined", "_dependents", "_dependencies")

    def __init__(self) -> None:
        self._defined: set[str] = set()
        self._dependents: dict[str, set[str]] = {}
        self._dependencies: dict[str, set[str]] = {}

    @classmethod
    def from_snippets(cls, snippets: Iterable[Snippet]) -> DependencyGraph:
        graph = cls()
        for snippet in snippets:
            graph.add_node(snippet.name, defined=True)
            for referenced in extract_references(snippet.defining_text):
                graph.add_edge(referenced, snippet.name)
        return graph

    @property
    def names(self) -> tuple[str, ...]:
        """Names of snippets present in the collection, sorted."""
        return tuple(sorted(self._defined))

    def add_node(self, name: str, *, defined: bool = False) -> None:
        if not name:
            raise ValueError("Node name must be non-empty.")
        self._dependents.setdefault(name, set())
        self._dependencies.setdefault(name, set())
        if defined:
            self._defined.add(name)

    def add_edge(self, dependency: str, dependent: str) -> None:
        """Record that ``dependent`` references ``dependency``."""
        self.add_node(dependency)
        self.add_node(dependent)
        self._dependents[dependency].add(dependent)
        self._dependencies[dependent].add(dependency)

    def dependents(self, name: str, *, transitive: bool = False) -> tuple[str, ...]:
        """Names that reference ``name``; unknown names have no dependents."""
        if name not in self._dependents:
            return ()
        if not transitive:
            return tuple(sorted(self._dependents[name]))
        return self._closure(name, self._dependents)

    def dependencies(self, name: str, *, transitive: bool = False) -> tuple[str, ...]:
        if name not in self._dependencies:
            return ()
        if not transitive:
            return tuple(sorted(self._dependencies[name]))
        return self._closure(name, self._dependencies)

    def reverse_map(self) -> dict[str, frozenset[str]]:
        """Referenced name to the set of names referencing it."""
        return {
            name: frozenset(dependents)
            for name, dependents in sorted(self._dependents.items())
            if dependents
        }

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Return canonical closed cycle paths among defined snippets, e.g. ``("a", "b", "a")``."""
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in sorted(self._defined):
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack_index[start] = len(stack)
            stack.append(start)
            frames: list[tuple[str, Iterator[str]]] = [(start, self._iter_defined(start))]

            while frames:
                node, children = frames[-1]
                child = next(children, None)
                if child is None:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, self._iter_defined(child)))
                elif child_state == 1:
                    cycle = (*stack[stack_index[child] :], child)
                    cycles[_canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def _iter_defined(self, name: str) -> Iterator[str]:
        return iter(sorted(child for child in self._dependents[name] if child in self._defined))

    @staticmethod
    def _closure(name: str, adjacency: dict[str, set[str]]) -> tuple[str, ...]:
        visited: set[str] = set()
        pending: list[str] = list(adjacency[name])

        while pending:
            node = pending.pop()
            if node in visited:
                continue
            visited.add(node)
            pending.extend(neighbor for neighbor in adjacency.get(node, ()) if neighbor not in visited)

        return tuple(sorted(visited))


def build_reverse_graph(snippets: Iterable[Snippet]) -> dict[str, frozenset[str]]:
    """Map each referenced name to the names of snippets whose defining text references it."""
    return DependencyGraph.from_snippets(snippets).reverse_map()


def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
    core = tuple(cycle[:-1])
    if len(core) == 1:
        return (core[0], core[0])
    best = min(core[offset:] + core[:offset] for offset in range(len(core)))
    return (*best, best[0])


__all__ = ["DependencyGraph", "build_reverse_graph"]
