"""
snippet-forge — unit tests for the reference resolver

File: tests/unit/references/test_resolver.py
Last updated: 2026-10-16

Purpose
- Validate substitution, cycle detection, missing-target reporting and draft shadowing.

What this test file should cover
- Recursive resolution of static content; generated content is substituted verbatim.
- Cycle paths named in visitation order for self and multi-hop cycles.
- ``Snippet '@name' not found.`` for unknown names.
- Non-throwing missing-name listing.
- Names whose content a resolution would pull in.
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from snippet_forge.errors import SnippetCycleError, SnippetNotFoundError
from snippet_forge.references.resolver import (
    build_index,
    find_missing,
    resolve,
    substituted_names,
    validate_no_cycles,
)

from .. import make_generated, make_static


def test_resolve_substitutes_nested_static_content() -> None:
    snippets = [
        make_static("greeting", "Hello @name"),
        make_static("name", "Ada"),
    ]

    assert resolve("Say: @greeting!", snippets) == "Say: Hello Ada!"


def test_resolve_accepts_name_mapping() -> None:
    snippet = make_static("a", "alpha")

    assert resolve("@a @a", {"a": snippet}) == "alpha alpha"


def test_generated_content_is_not_rescanned() -> None:
    snippets = [make_generated("gen", "write about @topic", content="output mentions @ghost")]

    assert resolve("@gen", snippets) == "output mentions @ghost"


def test_missing_reference_is_fatal_with_exact_message() -> None:
    with pytest.raises(SnippetNotFoundError) as excinfo:
        resolve("Tell me about @missing", [make_static("other", "x")])

    assert str(excinfo.value) == "Snippet '@missing' not found."
    assert excinfo.value.name == "missing"


def test_missing_reference_inside_nested_content_is_fatal() -> None:
    snippets = [make_static("outer", "wraps @inner")]

    with pytest.raises(SnippetNotFoundError, match="@inner"):
        resolve("@outer", snippets)


def test_two_node_cycle_names_path_in_visitation_order() -> None:
    snippets = [make_static("cycle_a", "@cycle_b"), make_static("cycle_b", "@cycle_a")]

    with pytest.raises(SnippetCycleError) as excinfo:
        resolve("@cycle_a", snippets)

    assert excinfo.value.path == ("cycle_a", "cycle_b", "cycle_a")
    assert "cycle_a -> cycle_b -> cycle_a" in str(excinfo.value)


def test_self_reference_names_only_itself_twice() -> None:
    with pytest.raises(SnippetCycleError) as excinfo:
        validate_no_cycles("@a", [make_static("a", "again @a")])

    assert excinfo.value.path == ("a", "a")


def test_validate_follows_generated_prompts() -> None:
    snippets = [
        make_generated("g1", "based on @g2"),
        make_generated("g2", "based on @g1"),
    ]

    with pytest.raises(SnippetCycleError) as excinfo:
        validate_no_cycles("@g1", snippets)

    assert excinfo.value.path == ("g1", "g2", "g1")


def test_validate_ignores_missing_names_and_acyclic_graphs() -> None:
    snippets = [make_static("a", "@b @c"), make_static("b", "@c"), make_static("c", "leaf")]

    validate_no_cycles("@a @nowhere", snippets)


def test_draft_replaces_persisted_snippet_with_same_id() -> None:
    persisted_a = make_static("a", "plain")
    b = make_static("b", "uses @a")
    draft = persisted_a.copy()
    draft.content = "now uses @b"

    validate_no_cycles("@b", [persisted_a, b])
    with pytest.raises(SnippetCycleError) as excinfo:
        validate_no_cycles(draft.defining_text, [persisted_a, b], draft=draft)

    assert excinfo.value.path == ("b", "a", "b")
    assert resolve("@a", [persisted_a, b]) == "plain"


def test_draft_renamed_hides_old_name() -> None:
    persisted = make_static("old", "text")
    draft = persisted.copy()
    draft.name = "new"

    index = build_index([persisted], draft=draft)

    assert set(index) == {"new"}
    assert find_missing("@old @new", [persisted], draft=draft) == ["old"]


def test_find_missing_lists_unknown_names_once_in_order() -> None:
    snippets = [make_static("a", "x")]

    assert find_missing("@x @a @x @y", snippets) == ["x", "y"]
    assert find_missing("no references", snippets) == []


def test_substituted_names_follow_static_content_but_stop_at_generated() -> None:
    snippets = [
        make_static("s", "see @failed and @s"),
        make_generated("failed", "about @hidden"),
        make_static("hidden", "never reached"),
    ]

    assert substituted_names("@s then @ghost @s", snippets) == ("s", "failed", "ghost")


def test_inputs_are_not_mutated() -> None:
    snippets = [make_static("a", "@b"), make_static("b", "B")]
    before = [snippet.to_dict() for snippet in snippets]

    resolve("@a", snippets)
    find_missing("@a @z", snippets)
    validate_no_cycles("@a", snippets)

    assert [snippet.to_dict() for snippet in snippets] == before


@given(st.text(alphabet=st.characters(exclude_characters="@"), max_size=200))
def test_resolve_is_identity_without_references(text: str) -> None:
    snippets = [make_static("a", "alpha")]

    assert resolve(text, snippets) == text
