"""
Gateway error taxonomy.

Transient and rate-limit conditions are handled inside the orchestrator and
never reach the caller. Only configuration errors raise out of a job.
"""
from __future__ import annotations

from typing import Sequence


class GatewayError(Exception):
    """Base exception for the translation gateway."""


class ConfigurationError(GatewayError):
    """Invalid or missing configuration (no providers, bad limits, missing keys)."""


class ProviderError(GatewayError):
    """Failure reported by a provider adapter."""

    def __init__(self, message: str, *, provider: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status


class TransientProviderError(ProviderError):
    """Timeout, 5xx or provider throttling. Retried within the tier."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, provider=provider, status=status)
        self.retry_after = retry_after


class PermanentProviderError(ProviderError):
    """Auth failure, exhausted quota or unsupported language pair. The tier is abandoned."""


class RateLimitExceeded(GatewayError):
    """Rate-limit tokens were not available within the allowed wait."""

    def __init__(self, provider: str, weight: float, waited: float) -> None:
        super().__init__(
            f"{provider}: rate limit exceeded (weight={weight:g}, waited {waited:.2f}s)"
        )
        self.provider = provider
        self.weight = weight
        self.waited = waited


class PlaceholderMismatch(GatewayError):
    """A translation lost, duplicated or invented placeholder tokens."""

    def __init__(self, key: str, expected: Sequence[str], actual: Sequence[str]) -> None:
        super().__init__(
            f"{key}: placeholder mismatch, expected {sorted(expected)} got {sorted(actual)}"
        )
        self.key = key
        self.expected = list(expected)
        self.actual = list(actual)


class CacheError(GatewayError):
    """The cache store could not be written. Non-fatal."""
