"""Shared fixtures: in-memory provider adapters and a fast gateway context."""
from __future__ import annotations

import asyncio
from typing import Callable, List, Sequence

import pytest

from gateway.base import ProviderAdapter
from gateway.cache import TranslationCache
from gateway.context import GatewayContext
from gateway.models import ProviderConfig, ProviderTranslation, RateLimitConfig, TranslationRequest
from gateway.orchestrator import ProviderTier
from gateway.rate_limit import RateLimiter
from gateway.retry import RetryPolicy


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def suffix_translation(suffix: str) -> Callable[[Sequence[TranslationRequest]], List[ProviderTranslation]]:
    def translate(batch: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
        return [ProviderTranslation(key=r.key, translated_text=f"{r.source_text} [{suffix}]") for r in batch]

    return translate


class StubAdapter(ProviderAdapter):
    """Records every batch and answers through ``behavior``.

    ``behavior`` may return translations or raise a provider error.
    """

    def __init__(
        self,
        name: str,
        behavior: Callable[[Sequence[TranslationRequest]], List[ProviderTranslation]] | None = None,
        *,
        delay: float = 0.0,
    ) -> None:
        super().__init__(max_batch_size=1000, max_chars_per_request=1_000_000)
        self.name = name
        self.behavior = behavior or suffix_translation(name)
        self.delay = delay
        self.calls: List[List[str]] = []

    async def translate_batch(self, requests: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
        self.calls.append([request.key for request in requests])
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.behavior(requests)

    @property
    def call_count(self) -> int:
        return len(self.calls)


def make_tier(tier: int, adapter: StubAdapter, **overrides) -> ProviderTier:
    settings = dict(
        tier=tier,
        name=adapter.name,
        engine=adapter.name,
        max_batch_size=50,
        max_chars_per_request=5000,
        rate_limit=RateLimitConfig(requests_per_sec=1000.0, burst=1000),
        max_retries=3,
    )
    settings.update(overrides)
    return ProviderTier(config=ProviderConfig(**settings), adapter=adapter)


def make_context(**overrides) -> GatewayContext:
    settings = dict(
        cache=TranslationCache(capacity=1000, ttl=3600.0),
        rate_limiter=RateLimiter(default_max_wait=1.0),
        retry_policy=RetryPolicy(base_delay=0.0, jitter=0.0),
        rate_limit_max_wait=1.0,
        cancel_grace_period=0.5,
    )
    settings.update(overrides)
    return GatewayContext(**settings)


def make_requests(texts: dict, *, source_lang: str = "en", target_lang: str = "de") -> List[TranslationRequest]:
    return [
        TranslationRequest.create(key, text, source_lang=source_lang, target_lang=target_lang)
        for key, text in texts.items()
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def context() -> GatewayContext:
    return make_context()
