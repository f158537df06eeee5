"""
snippet-forge — OpenRouter completion adapter

File: src/snippet_forge/providers/openrouter.py
Last updated: 2026-10-16

Purpose
- Single-turn, non-streaming chat completion against OpenRouter's OpenAI-compatible API.

What should be included in this file
- Lazy OpenAI SDK import with an injectable client for tests.
- One ``AsyncOpenAI`` client per API key.
- Exception mapping onto the provider error taxonomy and bounded retries.

Functional requirements
- A missing or blank key fails with ``OpenRouter API key is missing.`` before any network call.

Non-functional requirements
- Must be configurable and safe; do not hardcode keys.
"""

from __future__ import annotations

import asyncio
import importlib
import random as random_module
import time
from collections.abc import Mapping, Sequence
from typing import Protocol, cast

import structlog

from snippet_forge.constants import OPENROUTER_BASE_URL
from snippet_forge.providers.base import (
    BackoffConfig,
    ProviderAuthenticationError,
    ProviderContextLengthError,
    ProviderError,
    ProviderInvalidRequestError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServiceError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RandomFn,
    SleepFn,
    run_with_retries,
)

MISSING_API_KEY_MESSAGE = "OpenRouter API key is missing."


class _ChatCompletionsAPI(Protocol):
    async def create(self, **kwargs: object) -> object: ...


class _ChatAPI(Protocol):
    completions: _ChatCompletionsAPI


class _OpenAIClient(Protocol):
    chat: _ChatAPI


class OpenRouterCompletionService:
    """``CompletionService`` backed by the OpenAI SDK pointed at OpenRouter."""

    provider_name = "openrouter"

    def __init__(
        self,
        *,
        client: _OpenAIClient | None = None,
        base_url: str = OPENROUTER_BASE_URL,
        timeout_seconds: float | None = 60.0,
        backoff: BackoffConfig | None = None,
        sleep: SleepFn = asyncio.sleep,
        random_fn: RandomFn = random_module.random,
        app_name: str | None = "snippet-forge",
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._client = client
        self._clients: dict[str, _OpenAIClient] = {}
        self._base_url = _validate_non_empty_str(base_url, "base_url")
        self._timeout_seconds = timeout_seconds
        self._backoff = backoff if backoff is not None else BackoffConfig()
        self._sleep = sleep
        self._random_fn = random_fn
        self._app_name = app_name
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def complete(
        self,
        prompt: str,
        model: str,
        credentials: str | None,
        *,
        system: str | None = None,
    ) -> str:
        api_key = _require_api_key(credentials)
        model_name = _validate_non_empty_str(model, "model")
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload: dict[str, object] = {"model": model_name, "messages": messages}

        async def operation() -> str:
            client = self._client_for(api_key)
            started = time.perf_counter()
            raw = await client.chat.completions.create(**payload)
            latency_ms = int((time.perf_counter() - started) * 1000)
            text = _extract_text(raw)
            self._logger.debug(
                "completion_received",
                provider=self.provider_name,
                model=model_name,
                latency_ms=latency_ms,
                chars=len(text),
            )
            return text

        def on_retry(attempt: int, error: ProviderError, delay: float) -> None:
            self._logger.warning(
                "completion_retry_scheduled",
                provider=self.provider_name,
                model=model_name,
                attempt=attempt,
                code=error.code,
                delay_seconds=delay,
            )

        return await run_with_retries(
            operation,
            map_exception=self._map_exception,
            backoff=self._backoff,
            sleep=self._sleep,
            random_fn=self._random_fn,
            on_retry=on_retry,
        )

    def _client_for(self, api_key: str) -> _OpenAIClient:
        if self._client is not None:
            return self._client
        cached = self._clients.get(api_key)
        if cached is None:
            cached = self._create_default_client(api_key)
            self._clients[api_key] = cached
        return cached

    def _create_default_client(self, api_key: str) -> _OpenAIClient:
        try:
            openai_module = importlib.import_module("openai")
        except ImportError as exc:
            raise ProviderUnavailableError(
                provider=self.provider_name,
                detail="openai SDK is not installed",
            ) from exc

        async_openai = getattr(openai_module, "AsyncOpenAI", None)
        if async_openai is None:
            raise ProviderUnavailableError(
                provider=self.provider_name,
                detail="openai SDK does not expose AsyncOpenAI",
            )

        init_kwargs: dict[str, object] = {"api_key": api_key, "base_url": self._base_url}
        if self._timeout_seconds is not None:
            init_kwargs["timeout"] = self._timeout_seconds
        if self._app_name:
            init_kwargs["default_headers"] = {"X-Title": self._app_name}
        # Retries are owned by run_with_retries.
        init_kwargs["max_retries"] = 0

        client = async_openai(**init_kwargs)
        if not hasattr(client, "chat"):
            raise ProviderUnavailableError(
                provider=self.provider_name,
                detail="openai client missing chat completions API",
            )
        return cast("_OpenAIClient", client)

    def _map_exception(self, exc: Exception) -> ProviderError:
        if isinstance(exc, ProviderError):
            return exc
        status_code = _read_status_code(exc)
        detail = _exception_detail(exc)
        error_type = _classify(status_code, exc.__class__.__name__.lower(), detail.lower(), exc)
        return error_type(detail, provider=self.provider_name, http_status=status_code)


def _classify(
    status_code: int | None,
    class_name: str,
    detail: str,
    exc: Exception,
) -> type[ProviderError]:
    """Pick the error type from the HTTP status, the SDK class name, then the message."""

    if status_code in {401, 403} or "auth" in class_name or "permission" in class_name:
        return ProviderAuthenticationError
    if status_code == 429 or "ratelimit" in class_name:
        return ProviderRateLimitError
    if isinstance(exc, TimeoutError) or "timeout" in class_name:
        return ProviderTimeoutError
    if "contextlength" in class_name or (
        status_code in {400, 413, 422} and "context" in detail and "length" in detail
    ):
        return ProviderContextLengthError
    if status_code in {400, 404, 409, 422} or any(
        marker in class_name for marker in ("badrequest", "invalidrequest")
    ):
        return ProviderInvalidRequestError
    return ProviderServiceError


def _require_api_key(credentials: str | None) -> str:
    key = (credentials or "").strip()
    if not key:
        raise ProviderAuthenticationError(
            MISSING_API_KEY_MESSAGE,
            provider=OpenRouterCompletionService.provider_name,
            http_status=401,
        )
    return key


def _extract_text(raw: object) -> str:
    choices = _read_sequence(raw, "choices")
    message = _read_value(choices[0], "message") if choices else None
    content = _read_value(message, "content") if message is not None else None
    if isinstance(content, str):
        return content
    raise ProviderResponseError(
        "completion response contained no choices"
        if not choices
        else "completion response contained no text content",
        provider=OpenRouterCompletionService.provider_name,
    )


def _exception_detail(exc: BaseException) -> str:
    text = str(exc).strip()
    if text:
        return " ".join(text.split())
    return exc.__class__.__name__


def _read_status_code(exc: BaseException) -> int | None:
    for key in ("status_code", "status", "http_status"):
        value = getattr(exc, key, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        nested = getattr(response, "status_code", None)
        if isinstance(nested, int):
            return nested
    return None


def _read_value(value: object, key: str, *, default: object | None = None) -> object | None:
    if isinstance(value, Mapping):
        return cast("object | None", value.get(key, default))
    return cast("object | None", getattr(value, key, default))


def _read_sequence(value: object, key: str) -> tuple[object, ...]:
    candidate = _read_value(value, key)
    if isinstance(candidate, Sequence) and not isinstance(candidate, (str, bytes, bytearray)):
        return tuple(candidate)
    return ()


def _validate_non_empty_str(value: str, name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{name} cannot be empty")
    return normalized


__all__ = ["MISSING_API_KEY_MESSAGE", "OpenRouterCompletionService"]
