"""Error taxonomy shared by the resolver, service facade and wait gate."""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum
from typing import ClassVar


class ErrorKind(StrEnum):
    """Coarse error families surfaced to callers and the CLI."""

    VALIDATION = "validation"
    GENERATION = "generation"
    PERSISTENCE = "persistence"
    PROVIDER = "provider"
    AUTHENTICATION = "authentication"
    NETWORK = "network"
    UNKNOWN = "unknown"


class SnippetError(Exception):
    """Base class for snippet engine failures."""

    kind: ClassVar[ErrorKind] = ErrorKind.UNKNOWN


class SnippetValidationError(SnippetError, ValueError):
    """Raised when a snippet definition or a text block is not acceptable."""

    kind: ClassVar[ErrorKind] = ErrorKind.VALIDATION


class SnippetConflictError(SnippetValidationError):
    """Raised when a write would break name uniqueness."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"A snippet named '@{name}' already exists.")


class SnippetResolutionError(SnippetValidationError):
    """Raised when references in a text block cannot be resolved."""


class SnippetNotFoundError(SnippetResolutionError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Snippet '@{name}' not found.")


class SnippetCycleError(SnippetResolutionError):
    """Raised when a reference chain returns to a snippet already on the path."""

    def __init__(self, path: Sequence[str]) -> None:
        self.path = tuple(path)
        super().__init__("Snippet cycle detected: " + " -> ".join(self.path))


class DependencyWaitError(SnippetError):
    """Raised when waiting for in-flight regenerations cannot complete successfully."""

    kind: ClassVar[ErrorKind] = ErrorKind.GENERATION


class DependencyFailedError(DependencyWaitError):
    def __init__(self, name: str, error: str | None) -> None:
        self.name = name
        self.error = error
        detail = error if error else "unknown error"
        super().__init__(f"Dependency @{name} failed to regenerate: {detail}")


class DependencyTimeoutError(DependencyWaitError):
    def __init__(self, names: Sequence[str], timeout_seconds: float) -> None:
        self.names = tuple(sorted(names))
        self.timeout_seconds = timeout_seconds
        listed = ", ".join(f"@{name}" for name in self.names)
        super().__init__(
            f"Dependencies timeout: {listed} still regenerating after {timeout_seconds:g} seconds"
        )


__all__ = [
    "DependencyFailedError",
    "DependencyTimeoutError",
    "DependencyWaitError",
    "ErrorKind",
    "SnippetConflictError",
    "SnippetCycleError",
    "SnippetError",
    "SnippetNotFoundError",
    "SnippetResolutionError",
    "SnippetValidationError",
]
