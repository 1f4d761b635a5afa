from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, Optional

from .cache import TranslationCache
from .models import ProviderConfig
from .rate_limit import RateLimiter
from .retry import RetryPolicy


class CancellationToken:
    """Job-level cancellation flag that tasks can poll or await."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep ``delay`` seconds. Returns False if cancelled first."""
        if delay <= 0:
            return not self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False


@dataclass
class GatewayContext:
    """Process-wide shared state injected into routers and orchestrators.

    Holds the rate-limit buckets, the translation cache and the concurrency
    semaphores so separate jobs contend for the same provider budgets.
    """

    cache: TranslationCache = field(default_factory=TranslationCache)
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    max_concurrency: int = 16
    rate_limit_max_wait: float = 5.0
    cancel_grace_period: float = 5.0
    _global_semaphore: Optional[asyncio.Semaphore] = field(default=None, init=False, repr=False)
    _provider_semaphores: Dict[str, asyncio.Semaphore] = field(default_factory=dict, init=False, repr=False)

    def register_provider(self, config: ProviderConfig) -> None:
        self.rate_limiter.register(config.name, config.rate_limit)
        if config.name not in self._provider_semaphores:
            self._provider_semaphores[config.name] = asyncio.Semaphore(max(1, config.max_concurrent_requests))

    @property
    def global_semaphore(self) -> asyncio.Semaphore:
        if self._global_semaphore is None:
            self._global_semaphore = asyncio.Semaphore(max(1, self.max_concurrency))
        return self._global_semaphore

    def provider_semaphore(self, name: str) -> asyncio.Semaphore:
        try:
            return self._provider_semaphores[name]
        except KeyError:
            raise KeyError(f"Provider {name!r} is not registered with this context") from None

    def policy_for(self, config: ProviderConfig) -> RetryPolicy:
        if config.max_retries == self.retry_policy.max_retries:
            return self.retry_policy
        return self.retry_policy.with_max_retries(config.max_retries)
