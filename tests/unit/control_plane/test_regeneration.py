"""
snippet-forge — unit tests for the regeneration engine

File: tests/unit/control_plane/test_regeneration.py
Last updated: 2026-10-16

Purpose
- Validate single-flight passes, per-item persistence and failure recording.

What this test file should cover
- Static dirty snippets are cleared without completion calls.
- Generated snippets are resolved, completed and persisted one at a time.
- Upstream failures cascade within a pass without extra completion calls.
- Cycle members are skipped and reported; pass-completed is always emitted.
- Edits made while a completion is in flight survive the pass.

Functional requirements
- Offline; completion calls go to a scripted fake.

Non-functional requirements
- No sleep-based synchronization.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Sequence

import pytest

from snippet_forge.control_plane.regeneration import (
    RegenerationEngine,
    cycle_members,
    cycle_warning,
    held_upstream_message,
    superseded_message,
    upstream_failure_message,
)
from snippet_forge.domain.events import EventType, SnippetEvent
from snippet_forge.domain.models import Snippet
from snippet_forge.observability.events import EventBus
from snippet_forge.persistence.repositories import InMemorySnippetStore
from snippet_forge.providers.base import ProviderRateLimitError
from snippet_forge.service import SnippetService

from .. import TEST_MODEL, ScriptedCompletion, echo, make_generated, make_static


def _engine(
    snippets: Sequence[Snippet],
    completion: ScriptedCompletion,
    *,
    store: InMemorySnippetStore | None = None,
) -> tuple[RegenerationEngine, InMemorySnippetStore, EventBus]:
    target = store if store is not None else InMemorySnippetStore(snippets)
    bus = EventBus(buffer_size=256)
    engine = RegenerationEngine(target, completion, "sk-test", event_bus=bus)
    return engine, target, bus


def _updates(bus: EventBus) -> list[tuple[str, str]]:
    return [
        (str(event.payload["name"]), str(event.payload["status"]))
        for event in bus.history(event_type=EventType.SNIPPET_REGENERATION_UPDATE)
    ]


async def test_static_dirty_snippet_is_cleared_without_completion_call() -> None:
    completion = ScriptedCompletion()
    engine, store, bus = _engine([make_static("base", "v2", dirty=True)], completion)

    report = await engine.run_pass()

    assert report is not None
    assert report.succeeded == ("base",)
    assert completion.calls == []
    saved = store.get("base")
    assert saved is not None and not saved.is_dirty
    assert _updates(bus) == [("base", "success")]


async def test_generated_snippet_is_completed_with_resolved_prompt() -> None:
    completion = ScriptedCompletion(outcomes=deque(["result"]))
    snippets = [
        make_static("base", "v2"),
        make_generated("gen", "use @base", content="old", dirty=True, error="stale"),
    ]
    engine, store, bus = _engine(snippets, completion)

    report = await engine.run_pass()

    assert report is not None and report.ok
    assert completion.prompts == ["use v2"]
    assert completion.calls[0].model == TEST_MODEL
    assert completion.calls[0].credentials == "sk-test"
    gen = store.get("gen")
    assert gen is not None
    assert gen.content == "result"
    assert not gen.is_dirty
    assert gen.generation_error is None
    assert _updates(bus) == [("gen", "started"), ("gen", "success")]


async def test_failure_keeps_content_clears_dirty_and_records_error() -> None:
    completion = ScriptedCompletion(
        outcomes=deque([ProviderRateLimitError("slow down", provider="openrouter")])
    )
    engine, store, bus = _engine(
        [make_generated("gen", "hello", content="previous", dirty=True)], completion
    )

    report = await engine.run_pass()

    assert report is not None
    assert report.failed == ("gen",)
    gen = store.get("gen")
    assert gen is not None
    assert gen.content == "previous"
    assert not gen.is_dirty
    assert gen.generation_error == "slow down"
    failure = bus.history(event_type=EventType.SNIPPET_REGENERATION_UPDATE)[-1]
    assert failure.payload == {"name": "gen", "status": "failure", "error": "slow down"}


async def test_upstream_failure_cascades_without_completion_call() -> None:
    completion = ScriptedCompletion(outcomes=deque([RuntimeError("boom")]), respond=echo)
    snippets = [
        make_generated("first", "start", dirty=True),
        make_generated("second", "continue from @first", dirty=True),
        make_generated("third", "after @second", dirty=True),
    ]
    engine, store, _ = _engine(snippets, completion)

    report = await engine.run_pass()

    assert report is not None
    assert report.failed == ("first", "second", "third")
    assert completion.prompts == ["start"]
    second = store.get("second")
    third = store.get("third")
    assert second is not None and third is not None
    assert second.generation_error == upstream_failure_message("first")
    assert second.generation_error == "Upstream dependency @first failed to generate."
    assert third.generation_error == "Upstream dependency @second failed to generate."


async def test_unresolvable_prompt_records_resolver_error() -> None:
    completion = ScriptedCompletion(respond=echo)
    engine, store, _ = _engine([make_generated("gen", "about @ghost", dirty=True)], completion)

    await engine.run_pass()

    gen = store.get("gen")
    assert gen is not None
    assert gen.generation_error == "Snippet '@ghost' not found."
    assert completion.calls == []


async def test_blank_resolved_prompt_yields_empty_content_without_call() -> None:
    completion = ScriptedCompletion(respond=echo)
    snippets = [
        make_static("blank", "   "),
        make_generated("gen", "@blank", content="old", dirty=True),
    ]
    engine, store, _ = _engine(snippets, completion)

    await engine.run_pass()

    gen = store.get("gen")
    assert gen is not None
    assert gen.content == ""
    assert gen.generation_error is None
    assert completion.calls == []


async def test_clean_snippets_are_left_alone() -> None:
    completion = ScriptedCompletion(respond=echo)
    clean = make_generated("clean", "hello", content="kept")
    engine, store, _ = _engine([clean], completion)

    report = await engine.run_pass()

    assert report is not None
    assert report.succeeded == ()
    assert completion.calls == []
    assert store.get("clean") == clean


async def test_dependents_see_content_written_earlier_in_the_same_pass() -> None:
    completion = ScriptedCompletion(respond=echo)
    snippets = [
        make_generated("downstream", "wrap @upstream", dirty=True),
        make_generated("upstream", "seed", dirty=True),
    ]
    engine, _, _ = _engine(snippets, completion)

    await engine.run_pass()

    assert completion.prompts == ["seed", "wrap generated<seed>"]


async def test_cycles_are_skipped_and_reported_once() -> None:
    completion = ScriptedCompletion(respond=echo)
    snippets = [
        make_generated("after", "@x", dirty=True),
        make_generated("x", "@y", dirty=True),
        make_generated("y", "@x", dirty=True),
        make_generated("z", "free", dirty=True),
    ]
    engine, store, bus = _engine(snippets, completion)

    report = await engine.run_pass()

    assert report is not None
    assert report.skipped == ("after", "x", "y")
    assert report.succeeded == ("z",)
    cycle_events = bus.history(event_type=EventType.REGENERATION_CYCLE_DETECTED)
    assert len(cycle_events) == 1
    assert cycle_events[0].payload["names"] == ["x", "y"]
    assert cycle_events[0].payload["skipped"] == ["after", "x", "y"]
    assert cycle_events[0].payload["message"] == cycle_warning(["x", "y"])
    for name in ("after", "x", "y"):
        snippet = store.get(name)
        assert snippet is not None and snippet.is_dirty


async def test_pass_lifecycle_events_bracket_item_events() -> None:
    completion = ScriptedCompletion(respond=echo)
    engine, _, bus = _engine([make_generated("gen", "hi", dirty=True)], completion)

    report = await engine.run_pass()

    types = [event.event_type for event in bus.history()]
    assert types[0] is EventType.REGENERATION_STARTED
    assert types[-1] is EventType.REGENERATION_COMPLETED
    assert report is not None
    assert {event.correlation_id for event in bus.history()} == {report.pass_id}
    assert bus.history()[-1].payload == {"succeeded": 1, "failed": 0, "skipped": 0}


async def test_second_trigger_while_running_is_a_no_op() -> None:
    gate = asyncio.Event()
    completion = ScriptedCompletion(respond=echo, gate=gate)
    engine, _, _ = _engine([make_generated("gen", "hi", dirty=True)], completion)

    first = asyncio.create_task(engine.run_pass())
    await completion.entered.wait()

    assert engine.is_running
    assert engine.regenerating == frozenset({"gen"})
    assert await engine.run_pass() is None
    assert await engine.trigger() is False

    gate.set()
    report = await first

    assert report is not None and report.succeeded == ("gen",)
    assert not engine.is_running
    assert engine.regenerating == frozenset()
    assert len(completion.calls) == 1


async def test_upstream_failure_reached_through_static_content_cascades() -> None:
    completion = ScriptedCompletion(outcomes=deque([RuntimeError("boom")]), respond=echo)
    snippets = [
        make_generated("failed", "start", dirty=True),
        make_static("s", "see @failed"),
        make_generated("gen", "use @s", content="kept", dirty=True),
    ]
    engine, store, _ = _engine(snippets, completion)

    report = await engine.run_pass()

    assert report is not None
    assert report.failed == ("failed", "gen")
    assert completion.prompts == ["start"]
    gen = store.get("gen")
    assert gen is not None
    assert gen.content == "kept"
    assert gen.generation_error == upstream_failure_message("failed")


async def test_rename_and_prompt_edit_during_completion_survive_the_pass() -> None:
    gate = asyncio.Event()
    completion = ScriptedCompletion(respond=echo, gate=gate)
    store = InMemorySnippetStore([make_generated("gen", "old prompt", content="old", dirty=True)])
    bus = EventBus(buffer_size=256)
    service = SnippetService(store, completion, "sk-test", event_bus=bus, default_model=TEST_MODEL)

    running = asyncio.create_task(service.regenerate())
    await completion.entered.wait()
    await service.update("gen", new_name="renamed", prompt="new prompt")
    gate.set()
    report = await running
    await service.drain()

    assert report is not None
    assert report.superseded == ("gen",)
    assert report.succeeded == () and report.failed == ()
    assert store.get("gen") is None
    renamed = store.get("renamed")
    assert renamed is not None
    assert renamed.prompt == "new prompt"
    assert renamed.content == "old"
    assert renamed.is_dirty
    assert renamed.generation_error is None
    assert completion.prompts == ["old prompt"]
    last = bus.history(event_type=EventType.SNIPPET_REGENERATION_UPDATE)[-1]
    assert last.payload == {"name": "gen", "status": "failure", "error": superseded_message("gen")}

    follow_up = await service.regenerate()

    assert follow_up is not None and follow_up.succeeded == ("renamed",)
    renamed = store.get("renamed")
    assert renamed is not None
    assert renamed.content == "generated<new prompt>"
    assert not renamed.is_dirty


async def test_rename_during_completion_lands_the_result_on_the_renamed_row() -> None:
    gate = asyncio.Event()
    completion = ScriptedCompletion(respond=echo, gate=gate)
    engine, store, _ = _engine([make_generated("gen", "hi", dirty=True)], completion)

    running = asyncio.create_task(engine.run_pass())
    await completion.entered.wait()
    moved = store.get("gen")
    assert moved is not None
    moved.name = "renamed"
    store.save(moved)
    gate.set()
    report = await running

    assert report is not None and report.succeeded == ("gen",)
    assert store.get("gen") is None
    renamed = store.get("renamed")
    assert renamed is not None
    assert renamed.content == "generated<hi>"
    assert not renamed.is_dirty


async def test_delete_during_completion_drops_the_result() -> None:
    gate = asyncio.Event()
    completion = ScriptedCompletion(respond=echo, gate=gate)
    engine, store, bus = _engine([make_generated("gen", "hi", dirty=True)], completion)

    running = asyncio.create_task(engine.run_pass())
    await completion.entered.wait()
    assert store.delete("gen")
    gate.set()
    report = await running

    assert report is not None and report.superseded == ("gen",)
    assert store.load_all() == []
    last = bus.history(event_type=EventType.SNIPPET_REGENERATION_UPDATE)[-1]
    assert last.payload["error"] == superseded_message("gen", deleted=True)


async def test_upstream_edit_during_completion_holds_the_item_and_its_dependents() -> None:
    gate = asyncio.Event()
    completion = ScriptedCompletion(respond=echo, gate=gate)
    snippets = [
        make_static("base", "v1"),
        make_generated("gen", "use @base", content="old", dirty=True),
        make_generated("late", "wrap @gen", content="older", dirty=True),
    ]
    engine, store, bus = _engine(snippets, completion)

    running = asyncio.create_task(engine.run_pass())
    await completion.entered.wait()
    base = store.get("base")
    assert base is not None
    base.content = "v2"
    store.save(base)
    gate.set()
    report = await running

    assert report is not None
    assert report.superseded == ("gen", "late")
    assert completion.prompts == ["use v1"]
    gen = store.get("gen")
    late = store.get("late")
    assert gen is not None and late is not None
    assert (gen.content, gen.is_dirty) == ("old", True)
    assert (late.content, late.is_dirty) == ("older", True)
    assert late.generation_error is None
    assert ("late", "failure") in _updates(bus)
    held = bus.history(event_type=EventType.SNIPPET_REGENERATION_UPDATE)[-1]
    assert held.payload["error"] == held_upstream_message("gen")


def test_cycle_members_exclude_downstream_snippets() -> None:
    snippets = [
        make_generated("after", "@x"),
        make_generated("x", "@y"),
        make_generated("y", "@x"),
        make_static("self", "@self"),
    ]

    assert cycle_members(snippets) == ("self", "x", "y")


class _FailingSaveStore(InMemorySnippetStore):
    def __init__(self, snippets: Sequence[Snippet], *, fail_on: str) -> None:
        self._fail_on = fail_on
        super().__init__(snippets)

    def save(self, snippet: Snippet) -> Snippet:
        if snippet.name == self._fail_on and not snippet.is_dirty:
            raise OSError("disk full")
        return super().save(snippet)


async def test_crash_mid_pass_still_completes_and_leaves_partitioned_state() -> None:
    snippets = [
        make_generated("a_first", "one", dirty=True),
        make_generated("b_second", "two", dirty=True),
        make_generated("c_third", "three", dirty=True),
    ]
    store = _FailingSaveStore(snippets, fail_on="b_second")
    completion = ScriptedCompletion(respond=echo)
    engine, _, bus = _engine(snippets, completion, store=store)

    report = await engine.run_pass()

    assert report is not None
    assert report.error == "disk full"
    assert report.succeeded == ("a_first",)
    assert not engine.is_running
    assert engine.regenerating == frozenset()
    first = store.get("a_first")
    second = store.get("b_second")
    third = store.get("c_third")
    assert first is not None and not first.is_dirty
    assert second is not None and second.is_dirty
    assert third is not None and third.is_dirty
    assert ("b_second", "failure") in _updates(bus)
    completed = bus.history(event_type=EventType.REGENERATION_COMPLETED)[-1]
    assert completed.payload["error"] == "disk full"


async def test_failing_subscriber_does_not_break_the_pass() -> None:
    completion = ScriptedCompletion(respond=echo)
    engine, store, bus = _engine([make_generated("gen", "hi", dirty=True)], completion)

    def explode(event: SnippetEvent) -> None:
        raise RuntimeError("subscriber bug")

    bus.subscribe(None, explode)
    report = await engine.run_pass()

    assert report is not None and report.ok
    assert bus.dispatch_errors()
    gen = store.get("gen")
    assert gen is not None and not gen.is_dirty


async def test_engine_without_event_bus_runs() -> None:
    completion = ScriptedCompletion(respond=echo)
    store = InMemorySnippetStore([make_generated("gen", "hi", dirty=True)])
    engine = RegenerationEngine(store, completion, None)

    report = await engine.run_pass()

    assert report is not None and report.succeeded == ("gen",)
    assert completion.calls[0].credentials is None


def test_set_credentials_replaces_key() -> None:
    engine = RegenerationEngine(InMemorySnippetStore(), ScriptedCompletion(), None)
    engine.set_credentials("sk-new")

    assert engine._credentials == "sk-new"


@pytest.mark.parametrize("names", [("a",), ("a", "b")])
def test_cycle_warning_lists_names(names: tuple[str, ...]) -> None:
    message = cycle_warning(names)

    assert message.startswith("Cycles detected involving snippets: ")
    assert message.endswith("These snippets will be skipped.")
    assert ", ".join(names) in message
