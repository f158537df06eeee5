"""Shared builders and fakes for unit tests."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from snippet_forge.domain.models import Snippet

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
TEST_MODEL = "test/model"


def make_static(
    name: str,
    content: str = "",
    *,
    dirty: bool = False,
    offset_seconds: int = 0,
) -> Snippet:
    created = BASE_TIME + timedelta(seconds=offset_seconds)
    snippet = Snippet.create(name, content=content, now=created)
    snippet.is_dirty = dirty
    return snippet


def make_generated(
    name: str,
    prompt: str,
    *,
    content: str = "",
    model: str = TEST_MODEL,
    dirty: bool = False,
    error: str | None = None,
) -> Snippet:
    snippet = Snippet.create(
        name,
        content=content,
        is_generated=True,
        prompt=prompt,
        model=model,
        now=BASE_TIME,
    )
    snippet.is_dirty = dirty
    snippet.generation_error = error
    return snippet


@dataclass(frozen=True, slots=True)
class CompletionCall:
    prompt: str
    model: str
    credentials: str | None
    system: str | None


@dataclass(slots=True)
class ScriptedCompletion:
    """Completion fake: scripted outcomes first, then ``respond`` if set."""

    outcomes: deque[str | Exception] = field(default_factory=deque)
    respond: Callable[[str], str] | None = None
    gate: asyncio.Event | None = None
    calls: list[CompletionCall] = field(default_factory=list)
    entered: asyncio.Event = field(default_factory=asyncio.Event)

    async def complete(
        self,
        prompt: str,
        model: str,
        credentials: str | None,
        *,
        system: str | None = None,
    ) -> str:
        self.calls.append(CompletionCall(prompt, model, credentials, system))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.outcomes:
            outcome = self.outcomes.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        if self.respond is not None:
            return self.respond(prompt)
        raise RuntimeError("scripted completion outcomes exhausted")

    @property
    def prompts(self) -> list[str]:
        return [call.prompt for call in self.calls]


def echo(prompt: str) -> str:
    return f"generated<{prompt}>"
