"""
snippet-forge — completion provider contracts and shared utilities

File: src/snippet_forge/providers/base.py
Last updated: 2026-10-16

Purpose
- Completion service interface consumed by the regeneration engine and message submission.

What should be included in this file
- ``CompletionService`` protocol: ``complete(prompt, model, credentials) -> str``.
- Provider error taxonomy; each subclass fixes its ``code`` and default retryability.
- Bounded exponential backoff and a retry loop driven by that retryability.

Functional requirements
- Errors must carry a human-readable ``detail`` suitable for ``generation_error``.

Non-functional requirements
- Must make it easy to add new providers without touching the engine.
"""

from __future__ import annotations

import asyncio
import random as random_module
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import ClassVar, Protocol, TypeAlias, TypeVar, runtime_checkable

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]


@runtime_checkable
class CompletionService(Protocol):
    """Text completion endpoint used to produce generated snippet content."""

    async def complete(
        self,
        prompt: str,
        model: str,
        credentials: str | None,
        *,
        system: str | None = None,
    ) -> str: ...


class ProviderError(RuntimeError):
    """A completion call failed. ``detail`` is what ends up on the snippet."""

    code: ClassVar[str] = "provider_error"
    default_retryable: ClassVar[bool] = False
    default_http_status: ClassVar[int | None] = None

    def __init__(
        self,
        detail: object,
        *,
        provider: str = "provider",
        http_status: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        self.provider = _validate_non_empty_str(provider, "provider")
        self.detail = _normalize_detail(detail)
        self.retryable = self.default_retryable if retryable is None else bool(retryable)
        self.http_status = self.default_http_status if http_status is None else http_status
        status = f" http_status={self.http_status}" if self.http_status is not None else ""
        super().__init__(f"[{self.provider}:{self.code}{status}] {self.detail}")


class ProviderUnavailableError(ProviderError):
    """The provider SDK is missing or unusable."""

    code = "unavailable"


class ProviderAuthenticationError(ProviderError):
    """Rejected or missing API key."""

    code = "auth"


class ProviderInvalidRequestError(ProviderError):
    """Unknown model or bad request parameters."""

    code = "invalid_request"


class ProviderContextLengthError(ProviderError):
    """Resolved prompt exceeds the model context window."""

    code = "context_length"


class ProviderRateLimitError(ProviderError):
    code = "rate_limit"
    default_retryable = True
    default_http_status = 429


class ProviderTimeoutError(ProviderError):
    code = "timeout"
    default_retryable = True


class ProviderServiceError(ProviderError):
    """Upstream 5xx or otherwise unclassified failure."""

    code = "service"
    default_retryable = True


class ProviderResponseError(ProviderError):
    """The provider answered without usable completion text."""

    code = "response_invalid"


def is_retryable_error(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


def describe_error(error: BaseException) -> str:
    """Human-readable message for storing as a snippet's ``generation_error``."""

    if isinstance(error, ProviderError):
        return error.detail
    return _normalize_detail(error) if str(error).strip() else error.__class__.__name__


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy."""

    max_retries: int = 2
    initial_delay_seconds: float = 0.25
    multiplier: float = 2.0
    max_delay_seconds: float = 4.0
    jitter_ratio: float = 0.0

    def __post_init__(self) -> None:
        checks = (
            (self.max_retries >= 0, "max_retries must be >= 0"),
            (self.initial_delay_seconds >= 0, "initial_delay_seconds must be >= 0"),
            (self.multiplier >= 1.0, "multiplier must be >= 1.0"),
            (self.max_delay_seconds >= 0, "max_delay_seconds must be >= 0"),
            (
                self.initial_delay_seconds <= self.max_delay_seconds,
                "initial_delay_seconds must be <= max_delay_seconds",
            ),
            (0.0 <= self.jitter_ratio <= 1.0, "jitter_ratio must be between 0.0 and 1.0"),
        )
        for ok, message in checks:
            if not ok:
                raise ValueError(message)


def compute_backoff_delay(
    *,
    retry_number: int,
    config: BackoffConfig,
    random_fn: RandomFn = random_module.random,
) -> float:
    """Delay before 1-based retry ``retry_number``, capped at ``max_delay_seconds``."""

    if retry_number <= 0:
        raise ValueError("retry_number must be > 0")

    delay = min(
        config.initial_delay_seconds * config.multiplier ** (retry_number - 1),
        config.max_delay_seconds,
    )
    if not config.jitter_ratio:
        return delay

    sample = random_fn()
    if not 0.0 <= sample <= 1.0:
        raise ValueError("random_fn must return values in [0.0, 1.0]")
    # Symmetric jitter: sample 0.0 -> -ratio, 0.5 -> none, 1.0 -> +ratio.
    jittered = delay * (1.0 + config.jitter_ratio * (2.0 * sample - 1.0))
    return max(0.0, min(config.max_delay_seconds, jittered))


_ResultT = TypeVar("_ResultT")
RetryCallback: TypeAlias = Callable[[int, ProviderError, float], None]


async def run_with_retries(
    operation: Callable[[], Awaitable[_ResultT]],
    *,
    map_exception: Callable[[Exception], ProviderError],
    backoff: BackoffConfig,
    sleep: SleepFn = asyncio.sleep,
    random_fn: RandomFn = random_module.random,
    on_retry: RetryCallback | None = None,
) -> _ResultT:
    """
    Await ``operation`` until it succeeds, retrying retryable provider errors.

    Foreign exceptions go through ``map_exception`` first; the final failure is
    raised as the mapped ``ProviderError`` chained to the original.
    """

    for retry_number in range(1, backoff.max_retries + 2):
        try:
            return await operation()
        except Exception as exc:  # noqa: BLE001
            mapped = exc if isinstance(exc, ProviderError) else map_exception(exc)
            if not isinstance(mapped, ProviderError):
                raise TypeError("map_exception must return ProviderError") from exc
            if not mapped.retryable or retry_number > backoff.max_retries:
                if mapped is exc:
                    raise
                raise mapped from exc

            delay = compute_backoff_delay(
                retry_number=retry_number, config=backoff, random_fn=random_fn
            )
            if on_retry is not None:
                on_retry(retry_number, mapped, delay)
            await sleep(delay)
    raise AssertionError("unreachable")


def _validate_non_empty_str(value: str, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


def _normalize_detail(value: object) -> str:
    return " ".join(str(value).split()) or "unknown error"


__all__ = [
    "BackoffConfig",
    "CompletionService",
    "ProviderAuthenticationError",
    "ProviderContextLengthError",
    "ProviderError",
    "ProviderInvalidRequestError",
    "ProviderRateLimitError",
    "ProviderResponseError",
    "ProviderServiceError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "RandomFn",
    "RetryCallback",
    "SleepFn",
    "compute_backoff_delay",
    "describe_error",
    "is_retryable_error",
    "run_with_retries",
]
