"""
snippet-forge — unit tests for regeneration ordering

File: tests/unit/planning/test_scheduler.py
Last updated: 2026-10-16

Purpose
- Validate referenced-before-referencing ordering and cycle exclusion.

What this test file should cover
- Every snippet follows everything it references on acyclic collections.
- Isolated cycles land in ``cyclic`` while unrelated snippets stay ordered.
- Deterministic output for repeated runs.
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from snippet_forge.planning.scheduler import find_cycles, topological_order
from snippet_forge.references.scanner import extract_references

from .. import make_generated, make_static


def test_chain_is_ordered_dependencies_first() -> None:
    snippets = [
        make_generated("top", "@mid"),
        make_static("mid", "@base"),
        make_static("base", "v1"),
    ]

    order = topological_order(snippets)

    assert [snippet.name for snippet in order.ordered] == ["base", "mid", "top"]
    assert order.cyclic == ()
    assert not order.has_cycles


def test_isolated_cycle_is_excluded_and_reported() -> None:
    snippets = [
        make_static("x", "@y"),
        make_static("y", "@x"),
        make_static("z", "free"),
        make_generated("w", "@z"),
    ]

    order = topological_order(snippets)

    assert order.cyclic == ("x", "y")
    assert [snippet.name for snippet in order.ordered] == ["z", "w"]


def test_snippets_downstream_of_a_cycle_are_not_placed() -> None:
    snippets = [
        make_static("x", "@x"),
        make_generated("after", "@x"),
        make_static("ok", "fine"),
    ]

    order = topological_order(snippets)

    assert order.cyclic == ("after", "x")
    assert [snippet.name for snippet in order.ordered] == ["ok"]


def test_missing_references_impose_no_ordering() -> None:
    order = topological_order([make_static("a", "@ghost"), make_static("b", "plain")])

    assert [snippet.name for snippet in order.ordered] == ["a", "b"]


def test_find_cycles_reports_paths() -> None:
    snippets = [make_static("a", "@b"), make_static("b", "@a")]

    assert find_cycles(snippets) == (("a", "b", "a"),)


@st.composite
def _acyclic_collections(draw: st.DrawFn) -> list[object]:
    count = draw(st.integers(min_value=1, max_value=10))
    names = [f"s{index}" for index in range(count)]
    snippets = []
    for index, name in enumerate(names):
        earlier = names[:index]
        refs = draw(st.lists(st.sampled_from(earlier), max_size=3)) if earlier else []
        text = " ".join(f"@{ref}" for ref in refs) or "leaf"
        if draw(st.booleans()):
            snippets.append(make_generated(name, text))
        else:
            snippets.append(make_static(name, text))
    return draw(st.permutations(snippets))


@settings(max_examples=50, deadline=None)
@given(_acyclic_collections())
def test_acyclic_order_places_every_snippet_after_its_references(snippets: list) -> None:
    order = topological_order(snippets)
    position = {snippet.name: index for index, snippet in enumerate(order.ordered)}

    assert order.cyclic == ()
    assert len(order.ordered) == len(snippets)
    for snippet in order.ordered:
        for ref in extract_references(snippet.defining_text):
            assert position[ref] < position[snippet.name]
    assert topological_order(list(reversed(snippets))).ordered == order.ordered
