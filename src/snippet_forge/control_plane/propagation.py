"""Dirty propagation from a changed snippet name to everything that depends on it."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from snippet_forge.domain.events import EventType
from snippet_forge.planning.dependency_graph import build_reverse_graph
from snippet_forge.utils.concurrency import BackgroundTasks

if TYPE_CHECKING:
    from snippet_forge.control_plane.regeneration import RegenerationEngine
    from snippet_forge.domain.models import Snippet
    from snippet_forge.observability.events import EventBus
    from snippet_forge.persistence.repositories import SnippetStore


def collect_dirty_dependents(
    changed_name: str,
    snippets: Iterable[Snippet],
    *,
    now: datetime | None = None,
) -> list[Snippet]:
    """
    Return copies of every snippet that transitively references ``changed_name``, marked dirty.

    The changed snippet itself is only included when a reference cycle leads back to it.
    The input snippets are not modified. Results are sorted by name.
    """
    by_name = {snippet.name: snippet for snippet in snippets}
    reverse = build_reverse_graph(by_name.values())

    reached: set[str] = set()
    queue = deque(reverse.get(changed_name, ()))
    while queue:
        name = queue.popleft()
        if name in reached:
            continue
        reached.add(name)
        queue.extend(reverse.get(name, ()))

    updated: list[Snippet] = []
    for name in sorted(reached):
        original = by_name.get(name)
        if original is None:
            continue
        marked = original.copy()
        marked.is_dirty = True
        marked.touch(now)
        updated.append(marked)
    return updated


class DirtyPropagator:
    """Persist dirty marks for dependents, then kick the regeneration engine without waiting."""

    def __init__(
        self,
        store: SnippetStore,
        engine: RegenerationEngine,
        *,
        event_bus: EventBus | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._tasks = tasks if tasks is not None else BackgroundTasks(on_error=self._on_task_error)

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    def mark_dependents_dirty(self, changed_name: str) -> list[Snippet]:
        """Mark and persist dependents of ``changed_name``; schedule a regeneration pass."""
        updated = collect_dirty_dependents(changed_name, self._store.load_all())
        if updated:
            self._store.save_many(updated)
            names = [snippet.name for snippet in updated]
            self._logger.info("snippets_marked_dirty", changed=changed_name, names=names)
            if self._event_bus is not None:
                self._event_bus.emit(
                    EventType.SNIPPETS_DIRTY_MARKED,
                    {"changed": changed_name, "names": names},
                )
        self.schedule_regeneration()
        return updated

    def schedule_regeneration(self) -> None:
        """Fire-and-forget ``engine.trigger()`` on the running loop, if there is one."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No running loop; the next explicit regenerate picks the dirty set up.
            self._logger.debug("regeneration_not_scheduled", reason="no_running_loop")
            return
        self._tasks.spawn(self._engine.trigger(), name="snippet-regeneration")

    async def drain(self) -> None:
        await self._tasks.drain()

    def _on_task_error(self, exc: BaseException) -> None:
        self._logger.error(
            "regeneration_task_failed",
            error_type=exc.__class__.__name__,
            error=str(exc),
        )


__all__ = ["DirtyPropagator", "collect_dirty_dependents"]
