"""
snippet-forge — snippet service facade

File: src/snippet_forge/service.py
Last updated: 2026-10-16

Purpose
- Single entry point for callers that create, edit, delete and consume snippets.

What should be included in this file
- Snippet CRUD with name/cycle validation, dirty propagation and change events.
- On-save generation for new generated snippets.
- Message preparation and submission that wait on in-flight dependency regenerations.
- Named system prompt management.

Functional requirements
- Resolver failures (missing reference, cycle) abort a write; nothing is persisted.
- Provider failures during on-save generation are recorded on the snippet, which is still saved.
- Renames leave referencing snippets pointing at the old name; they are marked dirty.

Non-functional requirements
- Never blocks on a regeneration pass it scheduled itself.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Protocol

import structlog

from snippet_forge.constants import DEFAULT_MODEL, DEFAULT_WAIT_TIMEOUT_SECONDS
from snippet_forge.control_plane import DependencyWaitGate, DirtyPropagator, RegenerationEngine
from snippet_forge.domain.events import EventType
from snippet_forge.domain.models import Snippet, SystemPrompt, utc_now, validate_snippet_name
from snippet_forge.errors import SnippetConflictError, SnippetNotFoundError, SnippetValidationError
from snippet_forge.observability.events import EventBus
from snippet_forge.persistence.repositories import InMemorySystemPromptStore
from snippet_forge.providers.base import describe_error
from snippet_forge.references import (
    find_missing,
    resolve,
    substituted_names,
    validate_no_cycles,
)

if TYPE_CHECKING:
    from snippet_forge.control_plane.regeneration import PassReport
    from snippet_forge.persistence.repositories import SnippetStore
    from snippet_forge.providers.base import CompletionService


class SystemPromptStore(Protocol):
    def list(self) -> list[SystemPrompt]: ...

    def get(self, name: str) -> SystemPrompt | None: ...

    def save(self, prompt: SystemPrompt) -> SystemPrompt: ...

    def delete(self, name: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class PreparedMessage:
    """Fully resolved message text ready for a completion call."""

    system: str | None
    user: str


class SnippetService:
    """Owns the regeneration engine, dirty propagator and wait gate for one snippet store."""

    def __init__(
        self,
        store: SnippetStore,
        completion: CompletionService,
        credentials: str | None,
        *,
        event_bus: EventBus | None = None,
        system_prompts: SystemPromptStore | None = None,
        default_model: str = DEFAULT_MODEL,
        wait_timeout_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._store = store
        self._completion = completion
        self._credentials = credentials
        self._event_bus = event_bus if event_bus is not None else EventBus()
        self._system_prompts = (
            system_prompts if system_prompts is not None else InMemorySystemPromptStore()
        )
        self._default_model = default_model
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._engine = RegenerationEngine(
            store,
            completion,
            credentials,
            event_bus=self._event_bus,
            logger=self._logger,
        )
        self._propagator = DirtyPropagator(
            store,
            self._engine,
            event_bus=self._event_bus,
            logger=self._logger,
        )
        self._wait_gate = DependencyWaitGate(
            self._engine,
            self._event_bus,
            default_timeout_seconds=wait_timeout_seconds,
            logger=self._logger,
        )

    @property
    def store(self) -> SnippetStore:
        return self._store

    @property
    def engine(self) -> RegenerationEngine:
        return self._engine

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def wait_gate(self) -> DependencyWaitGate:
        return self._wait_gate

    @property
    def propagator(self) -> DirtyPropagator:
        return self._propagator

    def set_credentials(self, credentials: str | None) -> None:
        self._credentials = credentials
        self._engine.set_credentials(credentials)

    # ------------------------------------------------------------------
    # Snippets
    # ------------------------------------------------------------------

    def get(self, name: str) -> Snippet | None:
        return self._store.get(name)

    def list(self) -> list[Snippet]:
        return self._store.load_all()

    async def add(
        self,
        name: str,
        *,
        content: str = "",
        is_generated: bool = False,
        prompt: str | None = None,
        model: str | None = None,
        generate: bool = True,
    ) -> Snippet:
        """
        Create a snippet.

        Generated snippets get their first content immediately when ``generate`` is set;
        otherwise they are stored dirty and picked up by the next regeneration pass.
        """
        validate_snippet_name(name)
        snippets = self._store.load_all()
        if any(existing.name == name for existing in snippets):
            raise SnippetConflictError(name)

        draft = Snippet.create(
            name,
            content=content,
            is_generated=is_generated,
            prompt=prompt,
            model=(model or self._default_model) if is_generated else None,
        )
        validate_no_cycles(draft.defining_text, snippets, draft=draft)

        if draft.is_generated:
            if generate:
                await self._generate_draft(draft)
            else:
                draft.is_dirty = True

        self._store.save(draft)
        self._logger.info("snippet_added", snippet=name, is_generated=draft.is_generated)
        self._event_bus.emit(EventType.SNIPPET_SAVED, {"name": name, "id": draft.id})
        self._propagator.mark_dependents_dirty(name)
        return draft

    async def update(
        self,
        name: str,
        *,
        new_name: str | None = None,
        content: str | None = None,
        prompt: str | None = None,
        model: str | None = None,
        is_generated: bool | None = None,
    ) -> Snippet:
        """Edit a snippet in place, keeping its id. Returns the saved snippet."""
        current = self._require(name)
        target_name = name if new_name is None else validate_snippet_name(new_name, "new_name")
        snippets = self._store.load_all()
        if target_name != name and any(existing.name == target_name for existing in snippets):
            raise SnippetConflictError(target_name)

        generated = current.is_generated if is_generated is None else is_generated
        updated = Snippet(
            id=current.id,
            name=target_name,
            content=current.content if content is None else content,
            is_generated=generated,
            prompt=(current.prompt if prompt is None else prompt) if generated else None,
            model=((current.model if model is None else model) or self._default_model)
            if generated
            else None,
            generation_error=current.generation_error if generated else None,
            is_dirty=current.is_dirty if generated else False,
            created_at=current.created_at,
            updated_at=current.updated_at,
        )
        validate_no_cycles(updated.defining_text, snippets, draft=updated)

        definition_changed = generated and (
            not current.is_generated
            or updated.prompt != current.prompt
            or updated.model != current.model
        )
        if definition_changed:
            updated.is_dirty = True
        updated.touch()

        self._store.save(updated)
        self._logger.info(
            "snippet_updated",
            snippet=target_name,
            renamed_from=name if target_name != name else None,
            marked_dirty=definition_changed,
        )
        self._event_bus.emit(
            EventType.SNIPPET_SAVED,
            {"name": target_name, "id": updated.id, "previous_name": name},
        )
        self._propagator.mark_dependents_dirty(name)
        if target_name != name:
            self._propagator.mark_dependents_dirty(target_name)
        return updated

    async def delete(self, name: str) -> None:
        if not self._store.delete(name):
            raise SnippetNotFoundError(name)
        self._logger.info("snippet_deleted", snippet=name)
        self._event_bus.emit(EventType.SNIPPET_DELETED, {"name": name})
        self._propagator.mark_dependents_dirty(name)

    async def regenerate(self) -> PassReport | None:
        """Run a regeneration pass now and wait for it; ``None`` if one is already running."""
        return await self._engine.run_pass()

    def missing_references(self, text: str, *, draft: Snippet | None = None) -> list[str]:
        return find_missing(text, self._store.load_all(), draft=draft)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def prepare_message(
        self,
        text: str,
        *,
        system_prompt_name: str | None = None,
        timeout: float | None = None,
    ) -> PreparedMessage:
        """
        Resolve ``text`` (and the named system prompt) after in-flight regenerations of any
        snippet they depend on have finished.

        Raises ``DependencyFailedError`` or ``DependencyTimeoutError`` from the wait, and
        resolver errors for unknown names or cycles.
        """
        system_text: str | None = None
        if system_prompt_name is not None:
            system_prompt = self._system_prompts.get(system_prompt_name)
            if system_prompt is None:
                raise SnippetValidationError(f"System prompt '{system_prompt_name}' not found.")
            system_text = system_prompt.prompt

        snippets = self._store.load_all()
        wanted = _names_in_play(text, snippets)
        if system_text:
            wanted |= _names_in_play(system_text, snippets)
        await self._wait_gate.wait_for(wanted, timeout=timeout)

        snippets = self._store.load_all()
        user = resolve(text, snippets)
        system = resolve(system_text, snippets) if system_text else None
        return PreparedMessage(system=system, user=user)

    async def submit_message(
        self,
        text: str,
        model: str | None = None,
        *,
        system_prompt_name: str | None = None,
    ) -> str:
        prepared = await self.prepare_message(text, system_prompt_name=system_prompt_name)
        model_name = model or self._default_model
        self._logger.info("message_submitted", model=model_name, chars=len(prepared.user))
        return await self._completion.complete(
            prepared.user,
            model_name,
            self._credentials,
            system=prepared.system,
        )

    # ------------------------------------------------------------------
    # System prompts
    # ------------------------------------------------------------------

    def list_system_prompts(self) -> list[SystemPrompt]:
        return self._system_prompts.list()

    def get_system_prompt(self, name: str) -> SystemPrompt | None:
        return self._system_prompts.get(name)

    def save_system_prompt(self, name: str, prompt: str) -> SystemPrompt:
        """Create or replace a named system prompt after checking its references for cycles."""
        validate_no_cycles(prompt, self._store.load_all())
        existing = self._system_prompts.get(name)
        if existing is None:
            record = SystemPrompt.create(name, prompt)
        else:
            now = utc_now()
            record = replace(
                existing,
                prompt=prompt,
                updated_at=now if now > existing.updated_at else existing.updated_at,
            )
        self._logger.info("system_prompt_saved", system_prompt=record.name)
        return self._system_prompts.save(record)

    def delete_system_prompt(self, name: str) -> bool:
        removed = self._system_prompts.delete(name)
        if removed:
            self._logger.info("system_prompt_deleted", system_prompt=name)
        return removed

    async def drain(self) -> None:
        """Wait for scheduled regeneration passes and async event subscribers."""
        await self._propagator.drain()
        await self._event_bus.drain_async()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, name: str) -> Snippet:
        snippet = self._store.get(name)
        if snippet is None:
            raise SnippetNotFoundError(name)
        return snippet

    async def _generate_draft(self, draft: Snippet) -> None:
        prompt = draft.prompt or ""
        await self._wait_gate.wait_for(_names_in_play(prompt, self._store.load_all()))

        resolved = resolve(prompt, self._store.load_all(), draft=draft)
        if not resolved.strip():
            draft.content = ""
            draft.generation_error = None
            return

        model = draft.model or self._default_model
        try:
            draft.content = await self._completion.complete(resolved, model, self._credentials)
            draft.generation_error = None
        except Exception as exc:  # noqa: BLE001
            draft.generation_error = describe_error(exc)
            self._logger.warning(
                "snippet_generation_failed",
                snippet=draft.name,
                error=draft.generation_error,
            )


def _names_in_play(text: str, snippets: list[Snippet]) -> frozenset[str]:
    return frozenset(substituted_names(text, snippets))


__all__ = ["PreparedMessage", "SnippetService", "SystemPromptStore"]
