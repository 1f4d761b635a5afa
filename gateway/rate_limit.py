from __future__ import annotations

import asyncio
from typing import Dict

from aiolimiter import AsyncLimiter
from loguru import logger

from .errors import RateLimitExceeded
from .models import RateLimitConfig


class RateLimiter:
    """Per-provider token buckets shared by every caller in the process.

    A bucket holds ``burst`` tokens and refills at ``requests_per_sec`` on the
    event loop's monotonic clock, so over any window of ``T`` seconds at most
    ``requests_per_sec * T + burst`` tokens are handed out.
    """

    def __init__(self, *, default_max_wait: float = 5.0) -> None:
        self.default_max_wait = default_max_wait
        self._configs: Dict[str, RateLimitConfig] = {}
        self._buckets: Dict[str, AsyncLimiter] = {}

    def register(self, provider: str, config: RateLimitConfig) -> None:
        if config.requests_per_sec <= 0 or config.burst <= 0:
            raise ValueError(f"{provider}: rate limit must be positive")
        existing = self._configs.get(provider)
        if existing is not None and existing != config:
            logger.warning("Rate limit for {} re-registered with different settings; keeping the first", provider)
            return
        self._configs[provider] = config

    def capacity(self, provider: str) -> float:
        return float(self._config(provider).burst)

    def _config(self, provider: str) -> RateLimitConfig:
        try:
            return self._configs[provider]
        except KeyError:
            raise KeyError(f"No rate limit registered for provider {provider!r}") from None

    def _bucket(self, provider: str) -> AsyncLimiter:
        bucket = self._buckets.get(provider)
        if bucket is None:
            config = self._config(provider)
            bucket = AsyncLimiter(
                max_rate=config.burst,
                time_period=config.burst / config.requests_per_sec,
            )
            self._buckets[provider] = bucket
        return bucket

    def has_capacity(self, provider: str, weight: float = 1) -> bool:
        return self._bucket(provider).has_capacity(weight)

    async def acquire(self, provider: str, weight: float = 1, max_wait: float | None = None) -> None:
        """Take ``weight`` tokens, waiting at most ``max_wait`` seconds."""
        wait = self.default_max_wait if max_wait is None else max_wait
        bucket = self._bucket(provider)
        if weight > bucket.max_rate:
            raise RateLimitExceeded(provider, weight, 0.0)
        if wait <= 0:
            if not bucket.has_capacity(weight):
                raise RateLimitExceeded(provider, weight, 0.0)
            await bucket.acquire(weight)
            return
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            await asyncio.wait_for(bucket.acquire(weight), timeout=wait)
        except asyncio.TimeoutError:
            waited = loop.time() - started
            logger.debug("{}: no rate-limit tokens after {:.2f}s", provider, waited)
            raise RateLimitExceeded(provider, weight, waited) from None
