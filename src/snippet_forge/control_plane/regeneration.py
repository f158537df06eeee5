"""
snippet-forge — single-flight regeneration engine

File: src/snippet_forge/control_plane/regeneration.py
Last updated: 2026-10-16

Purpose
- Re-execute dirty generated snippets against the completion service in dependency order.

What should be included in this file
- ``RegenerationEngine`` with idle/running states guarded by an atomic check-and-set.
- Per-pass processing: reload, order, warn on cycles, regenerate dirty items one by one.
- In-pass failure cache so a failed upstream snippet fails its dependents without API calls,
  including dependents that reach it through static snippets.
- Results are written onto the row as it is after the completion call, never onto the snapshot.
- ``PassReport`` summarizing one pass.

Functional requirements
- A trigger while a pass is running is a no-op; freshly dirtied snippets wait for the next trigger.
- Every item is persisted as soon as it is processed.
- A snippet deleted or redefined while its completion was in flight keeps its current row; the
  result is dropped and an edited row stays dirty for the next pass.
- ``regeneration.completed`` is emitted and the running flag cleared even when a pass crashes.

Non-functional requirements
- Items are processed strictly sequentially; the completion call is the only long suspension.
- The set of names being regenerated is engine-owned and exposed only as a snapshot.
"""


from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from snippet_forge.domain import ids
from snippet_forge.domain.events import EventType, RegenerationStatus
from snippet_forge.errors import SnippetError
from snippet_forge.observability.logging import correlation_scope
from snippet_forge.planning.scheduler import find_cycles, topological_order
from snippet_forge.providers.base import describe_error
from snippet_forge.references.resolver import build_index, resolve, substituted_names

if TYPE_CHECKING:
    from snippet_forge.domain.models import Snippet
    from snippet_forge.observability.events import EventBus
    from snippet_forge.persistence.repositories import SnippetStore
    from snippet_forge.providers.base import CompletionService


@dataclass(frozen=True, slots=True)
class PassReport:
    """
    Outcome of one regeneration pass.

    ``skipped`` holds snippets the pass could not order (cycle members and their dependents).
    ``superseded`` holds snippets whose result was dropped because the row was deleted or
    redefined mid-flight, plus dependents held back behind them; those stay as they are now.
    """

    pass_id: str
    succeeded: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    superseded: tuple[str, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "pass_id": self.pass_id,
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "superseded": list(self.superseded),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


def cycle_warning(names: tuple[str, ...] | list[str]) -> str:
    listed = ", ".join(names)
    return f"Cycles detected involving snippets: {listed}. These snippets will be skipped."


def upstream_failure_message(name: str) -> str:
    return f"Upstream dependency @{name} failed to generate."


def superseded_message(name: str, *, deleted: bool = False) -> str:
    if deleted:
        return f"Snippet '@{name}' was deleted during regeneration."
    return f"Snippet '@{name}' changed during regeneration; it stays dirty for the next pass."


def held_upstream_message(name: str) -> str:
    return f"Upstream dependency @{name} changed during regeneration; skipped until the next pass."


def cycle_members(snippets: Iterable[Snippet]) -> tuple[str, ...]:
    """Sorted names that sit on at least one reference cycle."""
    return tuple(sorted({name for path in find_cycles(snippets) for name in path}))


@dataclass(frozen=True, slots=True)
class _Attempt:
    content: str | None = None
    error: str | None = None
    sent: str | None = None
    held: bool = False


@dataclass(frozen=True, slots=True)
class _ItemResult:
    error: str | None = None
    superseded: bool = False


class RegenerationEngine:
    """Single-flight, strictly sequential regeneration of dirty snippets."""

    def __init__(
        self,
        store: SnippetStore,
        completion: CompletionService,
        credentials: str | None,
        *,
        event_bus: EventBus | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._completion = completion
        self._credentials = credentials
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._running = False
        self._regenerating: set[str] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def regenerating(self) -> frozenset[str]:
        """Names whose regeneration step is in progress right now."""
        return frozenset(self._regenerating)

    def set_credentials(self, credentials: str | None) -> None:
        self._credentials = credentials

    async def trigger(self) -> bool:
        """Run one pass unless one is already running. Returns whether a pass ran."""
        return await self.run_pass() is not None

    async def run_pass(self) -> PassReport | None:
        """Run one pass and return its report, or ``None`` when a pass is already running."""
        # Test and set happen without an intervening await.
        if self._running:
            self._logger.debug("regeneration_trigger_ignored", reason="already_running")
            return None
        self._running = True

        pass_id = ids.generate_ulid()
        with correlation_scope(regeneration_pass=pass_id):
            return await self._execute_pass(pass_id)

    async def _execute_pass(self, pass_id: str) -> PassReport:
        succeeded: list[str] = []
        failed: list[str] = []
        superseded: list[str] = []
        skipped: tuple[str, ...] = ()
        crash: str | None = None
        try:
            self._logger.info("regeneration_pass_started")
            await self._emit(EventType.REGENERATION_STARTED, {}, pass_id)

            snippets = self._store.load_all()
            order = topological_order(snippets)
            skipped = order.cyclic
            if skipped:
                members = cycle_members(snippets)
                self._logger.warning(
                    "regeneration_cycles_detected", names=list(members), skipped=list(skipped)
                )
                await self._emit(
                    EventType.REGENERATION_CYCLE_DETECTED,
                    {
                        "names": list(members),
                        "skipped": list(skipped),
                        "message": cycle_warning(members),
                    },
                    pass_id,
                )

            failures: dict[str, str] = {}
            held: set[str] = set()
            for candidate in order.ordered:
                if not candidate.is_dirty:
                    continue
                result = await self._process_item(candidate.name, failures, held, pass_id)
                if result.superseded:
                    superseded.append(candidate.name)
                elif result.error is None:
                    succeeded.append(candidate.name)
                else:
                    failed.append(candidate.name)
        except Exception as exc:  # noqa: BLE001
            crash = describe_error(exc)
            self._logger.exception("regeneration_pass_crashed", error=crash)
        finally:
            self._regenerating.clear()
            self._running = False
            report = PassReport(
                pass_id=pass_id,
                succeeded=tuple(succeeded),
                failed=tuple(failed),
                skipped=skipped,
                superseded=tuple(superseded),
                error=crash,
            )
            self._logger.info(
                "regeneration_pass_completed",
                succeeded=len(succeeded),
                failed=len(failed),
                skipped=len(skipped),
                superseded=len(superseded),
                crashed=crash is not None,
            )
            payload: dict[str, object] = {
                "succeeded": len(succeeded),
                "failed": len(failed),
                "skipped": len(skipped),
            }
            if superseded:
                payload["superseded"] = len(superseded)
            if crash is not None:
                payload["error"] = crash
            await self._emit(EventType.REGENERATION_COMPLETED, payload, pass_id)
        return report

    async def _process_item(
        self,
        name: str,
        failures: dict[str, str],
        held: set[str],
        pass_id: str,
    ) -> _ItemResult:
        """Regenerate one snippet and persist the outcome on its current row."""
        index = build_index(self._store.load_all())
        snippet = index.get(name)
        if snippet is None or not snippet.is_dirty:
            return _ItemResult()

        if not snippet.is_generated:
            snippet.is_dirty = False
            snippet.touch()
            self._store.save(snippet)
            await self._emit_update(name, RegenerationStatus.SUCCESS, None, pass_id)
            return _ItemResult()

        self._regenerating.add(name)
        try:
            await self._emit_update(name, RegenerationStatus.STARTED, None, pass_id)
            attempt = await self._generate(snippet, index, failures, held)
            result = self._commit(snippet, attempt, failures, held)
        except Exception as exc:
            await self._emit_update(name, RegenerationStatus.FAILURE, describe_error(exc), pass_id)
            raise
        else:
            status = RegenerationStatus.FAILURE if result.error else RegenerationStatus.SUCCESS
            await self._emit_update(name, status, result.error, pass_id)
        finally:
            self._regenerating.discard(name)
        return result

    async def _generate(
        self,
        snippet: Snippet,
        index: Mapping[str, Snippet],
        failures: Mapping[str, str],
        held: set[str],
    ) -> _Attempt:
        prompt = snippet.prompt or ""
        for upstream in substituted_names(prompt, index):
            if upstream in held:
                return _Attempt(error=held_upstream_message(upstream), held=True)
            if upstream in failures:
                return _Attempt(error=upstream_failure_message(upstream))

        try:
            resolved = resolve(prompt, index)
            if not resolved.strip():
                return _Attempt(content="", sent=resolved)
            content = await self._completion.complete(
                resolved, snippet.model or "", self._credentials
            )
        except Exception as exc:  # noqa: BLE001
            return _Attempt(error=describe_error(exc))
        return _Attempt(content=content, sent=resolved)

    def _commit(
        self,
        snapshot: Snippet,
        attempt: _Attempt,
        failures: dict[str, str],
        held: set[str],
    ) -> _ItemResult:
        # No awaits below: the re-read and the save see the same store state.
        name = snapshot.name
        if attempt.held:
            held.add(name)
            self._logger.info("snippet_regeneration_deferred", snippet=name, error=attempt.error)
            return _ItemResult(attempt.error, superseded=True)

        current = self._store.load_all()
        fresh = next((item for item in current if item.id == snapshot.id), None)
        if fresh is None:
            held.add(name)
            message = superseded_message(name, deleted=True)
            self._logger.info("snippet_regeneration_dropped", snippet=name, reason="deleted")
            return _ItemResult(message, superseded=True)

        if _redefined(snapshot, fresh) or _inputs_moved(fresh, attempt, current):
            held.update((name, fresh.name))
            self._logger.info(
                "snippet_regeneration_dropped",
                snippet=name,
                current_name=fresh.name,
                reason="changed",
            )
            return _ItemResult(superseded_message(name), superseded=True)

        if attempt.content is not None:
            fresh.content = attempt.content
        fresh.is_dirty = False
        fresh.generation_error = attempt.error
        fresh.touch()
        self._store.save(fresh)

        if attempt.error is None:
            self._logger.info("snippet_regenerated", snippet=fresh.name, chars=len(fresh.content))
        else:
            failures[name] = failures[fresh.name] = attempt.error
            self._logger.warning(
                "snippet_regeneration_failed", snippet=fresh.name, error=attempt.error
            )
        return _ItemResult(attempt.error)

    async def _emit_update(
        self,
        name: str,
        status: RegenerationStatus,
        error: str | None,
        pass_id: str,
    ) -> None:
        payload: dict[str, object] = {"name": name, "status": status.value}
        if error is not None:
            payload["error"] = error
        await self._emit(EventType.SNIPPET_REGENERATION_UPDATE, payload, pass_id)

    async def _emit(
        self,
        event_type: EventType,
        payload: Mapping[str, object],
        pass_id: str,
    ) -> None:
        if self._event_bus is None:
            return
        _, errors = await self._event_bus.emit_async(event_type, payload, correlation_id=pass_id)
        for error in errors:
            self._logger.warning(
                "event_subscriber_failed",
                event_type=event_type.value,
                target=error.target,
                error_type=error.error_type,
                message=error.message,
            )


def _redefined(snapshot: Snippet, fresh: Snippet) -> bool:
    return (
        fresh.is_generated != snapshot.is_generated
        or fresh.prompt != snapshot.prompt
        or fresh.model != snapshot.model
    )


def _inputs_moved(fresh: Snippet, attempt: _Attempt, current: list[Snippet]) -> bool:
    """Whether the prompt would now resolve to something other than what was sent."""
    if attempt.sent is None:
        return False
    try:
        return resolve(fresh.prompt or "", current) != attempt.sent
    except SnippetError:
        return True


__all__ = [
    "PassReport",
    "RegenerationEngine",
    "cycle_members",
    "cycle_warning",
    "held_upstream_message",
    "superseded_message",
    "upstream_failure_message",
]
