"""Completion providers."""

from __future__ import annotations

from snippet_forge.providers.base import (
    BackoffConfig,
    CompletionService,
    ProviderAuthenticationError,
    ProviderContextLengthError,
    ProviderError,
    ProviderInvalidRequestError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServiceError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    describe_error,
)
from snippet_forge.providers.openrouter import OpenRouterCompletionService

__all__ = [
    "BackoffConfig",
    "CompletionService",
    "OpenRouterCompletionService",
    "ProviderAuthenticationError",
    "ProviderContextLengthError",
    "ProviderError",
    "ProviderInvalidRequestError",
    "ProviderRateLimitError",
    "ProviderResponseError",
    "ProviderServiceError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "describe_error",
]
