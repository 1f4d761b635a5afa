"""Tests for the per-provider rate limiter."""
import asyncio

import pytest

from gateway.errors import RateLimitExceeded
from gateway.models import RateLimitConfig
from gateway.rate_limit import RateLimiter


class TestRateLimiter:
    """Test RateLimiter."""

    def test_register_rejects_non_positive(self) -> None:
        """Zero or negative limits are a configuration bug."""
        limiter = RateLimiter()
        with pytest.raises(ValueError):
            limiter.register("deepl", RateLimitConfig(requests_per_sec=0, burst=1))

    def test_first_registration_wins(self) -> None:
        """Re-registering with other settings keeps the first bucket."""
        limiter = RateLimiter()
        limiter.register("deepl", RateLimitConfig(requests_per_sec=1, burst=3))
        limiter.register("deepl", RateLimitConfig(requests_per_sec=9, burst=9))
        assert limiter.capacity("deepl") == 3

    @pytest.mark.asyncio
    async def test_unknown_provider(self) -> None:
        """Acquiring for an unregistered provider is a KeyError."""
        with pytest.raises(KeyError):
            await RateLimiter().acquire("nobody")

    @pytest.mark.asyncio
    async def test_burst_then_exhausted(self) -> None:
        """The burst is available at once; after that a zero wait fails."""
        limiter = RateLimiter()
        limiter.register("deepl", RateLimitConfig(requests_per_sec=1, burst=2))
        await limiter.acquire("deepl", max_wait=0)
        await limiter.acquire("deepl", max_wait=0)
        assert not limiter.has_capacity("deepl")
        with pytest.raises(RateLimitExceeded):
            await limiter.acquire("deepl", max_wait=0)

    @pytest.mark.asyncio
    async def test_bounded_wait(self) -> None:
        """A wait longer than max_wait raises instead of blocking."""
        limiter = RateLimiter()
        limiter.register("google", RateLimitConfig(requests_per_sec=0.5, burst=1))
        await limiter.acquire("google")
        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RateLimitExceeded) as exc_info:
            await limiter.acquire("google", max_wait=0.05)
        assert loop.time() - started < 1.0
        assert exc_info.value.provider == "google"

    @pytest.mark.asyncio
    async def test_weight_above_capacity(self) -> None:
        """A weight larger than the bucket can never be admitted."""
        limiter = RateLimiter()
        limiter.register("systran", RateLimitConfig(requests_per_sec=100, burst=10))
        with pytest.raises(RateLimitExceeded):
            await limiter.acquire("systran", weight=11, max_wait=5.0)

    @pytest.mark.asyncio
    async def test_refill(self) -> None:
        """Tokens come back at the configured rate."""
        limiter = RateLimiter()
        limiter.register("openai", RateLimitConfig(requests_per_sec=50, burst=1))
        await limiter.acquire("openai")
        await limiter.acquire("openai", max_wait=0.5)

    @pytest.mark.asyncio
    async def test_window_bound(self) -> None:
        """No more than rate * T + burst tokens are granted in a window."""
        limiter = RateLimiter()
        limiter.register("deepl", RateLimitConfig(requests_per_sec=20, burst=2))
        loop = asyncio.get_running_loop()
        started = loop.time()
        granted = 0
        while loop.time() - started < 0.2:
            try:
                await limiter.acquire("deepl", max_wait=0.01)
            except RateLimitExceeded:
                continue
            granted += 1
        elapsed = loop.time() - started
        assert granted <= 20 * elapsed + 2 + 1

    @pytest.mark.asyncio
    async def test_window_bound_concurrent(self) -> None:
        """The rate * T + burst bound holds when many tasks acquire at once."""
        limiter = RateLimiter()
        limiter.register("deepl", RateLimitConfig(requests_per_sec=20, burst=2))
        loop = asyncio.get_running_loop()
        started = loop.time()
        grants = []

        async def worker() -> None:
            while loop.time() - started < 0.2:
                try:
                    await limiter.acquire("deepl", max_wait=0.05)
                except RateLimitExceeded:
                    await asyncio.sleep(0)
                    continue
                grants.append(loop.time())

        await asyncio.gather(*(worker() for _ in range(30)))
        elapsed = loop.time() - started
        assert len(grants) >= 2
        assert len(grants) <= 20 * elapsed + 2 + 1
