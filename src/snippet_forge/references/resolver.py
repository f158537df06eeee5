"""
snippet-forge — reference resolver

File: src/snippet_forge/references/resolver.py
Last updated: 2026-10-16

Purpose
- Turn text containing ``@name`` references into final text, and validate reference
  structure before a snippet or message is saved or sent.

What should be included in this file
- ``resolve``: recursive substitution with a path stack; fatal on missing targets and cycles.
- ``validate_no_cycles``: structural cycle check over each snippet's defining text.
- ``find_missing``: non-throwing listing of unresolvable direct references.

Functional requirements
- A draft snippet passed alongside the collection replaces the persisted snippet with the
  same id (or name) for the duration of the call.
- Generated snippet content is substituted verbatim; it is never rescanned for references.
- Cycle errors name the path in visitation order, starting and ending at the repeated name.

Non-functional requirements
- Pure functions: inputs are never mutated.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import TYPE_CHECKING

from snippet_forge.errors import SnippetCycleError, SnippetNotFoundError
from snippet_forge.references.scanner import REFERENCE_RE, iter_references, ordered_references

if TYPE_CHECKING:
    import re

    from snippet_forge.domain.models import Snippet

SnippetCollection = Iterable["Snippet"] | Mapping[str, "Snippet"]


def build_index(snippets: SnippetCollection, *, draft: Snippet | None = None) -> dict[str, Snippet]:
    """Map names to snippets, with ``draft`` shadowing its persisted counterpart."""
    values = snippets.values() if isinstance(snippets, Mapping) else snippets
    index: dict[str, Snippet] = {}
    for snippet in values:
        if draft is not None and (snippet.id == draft.id or snippet.name == draft.name):
            continue
        index[snippet.name] = snippet
    if draft is not None:
        index[draft.name] = draft
    return index


def resolve(text: str, snippets: SnippetCollection, *, draft: Snippet | None = None) -> str:
    """
    Substitute every ``@name`` in ``text`` with the named snippet's content.

    Static snippet content is resolved recursively. Raises ``SnippetNotFoundError`` for an
    unknown name and ``SnippetCycleError`` when a name reappears on its own expansion path.
    """
    return _resolve_text(text, build_index(snippets, draft=draft), ())


def validate_no_cycles(
    text: str,
    snippets: SnippetCollection,
    *,
    draft: Snippet | None = None,
) -> None:
    """Raise ``SnippetCycleError`` if any reference reachable from ``text`` loops back."""
    index = build_index(snippets, draft=draft)
    finished: set[str] = set()

    for root in ordered_references(text):
        if root in finished or root not in index:
            continue

        path: list[str] = [root]
        on_path: set[str] = {root}
        stack: list[Iterator[str]] = [iter_references(index[root].defining_text)]

        while stack:
            child = next(stack[-1], None)
            if child is None:
                done = path.pop()
                on_path.discard(done)
                finished.add(done)
                stack.pop()
                continue

            if child in on_path:
                raise SnippetCycleError([*path[path.index(child) :], child])
            if child in finished or child not in index:
                continue

            path.append(child)
            on_path.add(child)
            stack.append(iter_references(index[child].defining_text))


def find_missing(
    text: str,
    snippets: SnippetCollection,
    *,
    draft: Snippet | None = None,
) -> list[str]:
    """Return names referenced directly by ``text`` that have no snippet, first occurrence first."""
    index = build_index(snippets, draft=draft)
    return [name for name in ordered_references(text) if name not in index]


def substituted_names(text: str, snippets: SnippetCollection) -> tuple[str, ...]:
    """
    Names whose content ends up in ``resolve(text, snippets)``, in first-visit order.

    Static targets are followed into their content; generated targets are leaves. Unknown
    names are listed but not followed, and repeated names are visited once.
    """
    index = build_index(snippets)
    seen: dict[str, None] = {}
    stack = list(reversed(ordered_references(text)))
    while stack:
        name = stack.pop()
        if name in seen:
            continue
        seen[name] = None
        target = index.get(name)
        if target is not None and not target.is_generated:
            stack.extend(reversed(ordered_references(target.content)))
    return tuple(seen)


def _resolve_text(text: str, index: Mapping[str, Snippet], path: tuple[str, ...]) -> str:
    if not text:
        return text

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in path:
            raise SnippetCycleError([*path[path.index(name) :], name])
        target = index.get(name)
        if target is None:
            raise SnippetNotFoundError(name)
        if target.is_generated:
            return target.content
        return _resolve_text(target.content, index, (*path, name))

    return REFERENCE_RE.sub(substitute, text)


__all__ = [
    "SnippetCollection",
    "build_index",
    "find_missing",
    "resolve",
    "substituted_names",
    "validate_no_cycles",
]
