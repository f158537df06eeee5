"""In-process event bus with bounded replay and isolated subscriber failures."""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final

from snippet_forge.constants import DEFAULT_EVENT_BUFFER_SIZE
from snippet_forge.domain.events import EventType, SnippetEvent
from snippet_forge.domain.ids import generate_event_id

Subscriber = Callable[[SnippetEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting publishers."""

    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: EventType | None
    callback: Subscriber


class EventBus:
    """
    Broadcast channel for engine lifecycle events.

    Synchronous subscribers run inline in publish order. Awaitables returned by a
    subscriber are awaited by ``publish_async`` and scheduled as tasks by ``publish`` when
    an event loop is running. A failing subscriber never prevents delivery to the others.
    """

    def __init__(self, *, buffer_size: int = DEFAULT_EVENT_BUFFER_SIZE) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")

        self._buffer = deque[SnippetEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_tasks: set[asyncio.Task[Any]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1

    def subscribe(self, event_type: str | EventType | None, callback: Subscriber) -> int:
        """Subscribe ``callback`` to one event type, or to every event when ``None``."""
        if not callable(callback):
            raise ValueError("callback must be callable")

        token = self._next_token
        self._next_token += 1
        self._subscriptions[token] = _Subscription(
            token=token,
            event_type=None if event_type is None else _as_event_type(event_type),
            callback=callback,
        )
        return token

    def unsubscribe(self, token: int) -> bool:
        """Remove a subscription. Returns ``True`` when the token existed."""
        return self._subscriptions.pop(token, None) is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: SnippetEvent) -> tuple[DispatchError, ...]:
        """Publish from synchronous code."""
        errors: list[DispatchError] = []
        for subscription in self._record(event):
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event, subscription.callback)
            except Exception as exc:  # noqa: BLE001
                errors.append(_dispatch_error(event, subscription.callback, exc))
        self._dispatch_errors.extend(errors)
        return tuple(errors)

    async def publish_async(self, event: SnippetEvent) -> tuple[DispatchError, ...]:
        """Publish from async code, awaiting async subscribers in subscription order."""
        errors: list[DispatchError] = []
        for subscription in self._record(event):
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                errors.append(_dispatch_error(event, subscription.callback, exc))
        self._dispatch_errors.extend(errors)
        return tuple(errors)

    def emit(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
    ) -> tuple[SnippetEvent, tuple[DispatchError, ...]]:
        event = build_event(event_type, payload, correlation_id=correlation_id)
        return event, self.publish(event)

    async def emit_async(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
    ) -> tuple[SnippetEvent, tuple[DispatchError, ...]]:
        event = build_event(event_type, payload, correlation_id=correlation_id)
        return event, await self.publish_async(event)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        """Await subscriber tasks scheduled by ``publish``."""
        pending = tuple(self._pending_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return tuple(self._dispatch_errors)

    def history(
        self,
        *,
        event_type: str | EventType | None = None,
        limit: int | None = None,
    ) -> tuple[SnippetEvent, ...]:
        """Buffered events in publish order, optionally filtered by type."""
        type_filter = None if event_type is None else _as_event_type(event_type)
        events = [
            event for event in self._buffer if type_filter is None or event.event_type == type_filter
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            events = events[-limit:]
        return tuple(events)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        return tuple(self._dispatch_errors)

    def _record(self, event: SnippetEvent) -> tuple[_Subscription, ...]:
        if not isinstance(event, SnippetEvent):
            raise ValueError(f"event must be SnippetEvent, got {type(event).__name__}")
        self._buffer.append(event)
        return tuple(
            subscription
            for subscription in self._subscriptions.values()
            if subscription.event_type is None or subscription.event_type == event.event_type
        )

    def _schedule(self, awaitable: object, event: SnippetEvent, callback: Subscriber) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise RuntimeError("async subscriber requires a running event loop") from None

        task = loop.create_task(_await(awaitable))
        self._pending_tasks.add(task)

        def on_done(done: asyncio.Task[Any]) -> None:
            self._pending_tasks.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if isinstance(exc, Exception):
                self._dispatch_errors.append(_dispatch_error(event, callback, exc))

        task.add_done_callback(on_done)


def build_event(
    event_type: str | EventType,
    payload: Mapping[str, object],
    *,
    correlation_id: str | None = None,
) -> SnippetEvent:
    return SnippetEvent(
        event_id=generate_event_id(),
        event_type=_as_event_type(event_type),
        timestamp=datetime.now(tz=UTC),
        correlation_id=correlation_id,
        payload=dict(payload),  # type: ignore[arg-type]
    )


async def _await(awaitable: Any) -> object:
    return await awaitable


def _as_event_type(value: str | EventType) -> EventType:
    if isinstance(value, EventType):
        return value
    try:
        return EventType(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in EventType)
        raise ValueError(f"invalid event_type {value!r}; allowed: {allowed}") from exc


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _dispatch_error(event: SnippetEvent, callback: object, exc: Exception) -> DispatchError:
    return DispatchError(
        event_id=event.event_id,
        target=_callback_name(callback),
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = ["DispatchError", "EventBus", "Subscriber", "build_event"]
