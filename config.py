from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping

from gateway.cache import TranslationCache
from gateway.context import GatewayContext
from gateway.errors import ConfigurationError
from gateway.models import BillingUnit, ProviderConfig, RateLimitConfig
from gateway.rate_limit import RateLimiter
from gateway.retry import RetryPolicy


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass(slots=True)
class RetrySettings:
    max_retries: int = field(default_factory=lambda: _env_int("GATEWAY_MAX_RETRIES", 3))
    base_delay: float = field(default_factory=lambda: _env_float("GATEWAY_RETRY_BASE_DELAY", 0.5))
    max_delay: float = field(default_factory=lambda: _env_float("GATEWAY_RETRY_MAX_DELAY", 30.0))
    multiplier: float = 2.0
    jitter: float = 0.1

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            jitter=self.jitter,
        )


@dataclass(slots=True)
class CacheSettings:
    capacity: int = field(default_factory=lambda: _env_int("GATEWAY_CACHE_CAPACITY", 10_000))
    ttl: float = field(default_factory=lambda: _env_float("GATEWAY_CACHE_TTL", 86_400.0))


@dataclass(slots=True)
class GatewaySettings:
    retry: RetrySettings = field(default_factory=RetrySettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    max_concurrency: int = field(default_factory=lambda: _env_int("GATEWAY_MAX_CONCURRENCY", 16))
    rate_limit_max_wait: float = field(default_factory=lambda: _env_float("GATEWAY_RATE_LIMIT_MAX_WAIT", 5.0))
    cancel_grace_period: float = field(default_factory=lambda: _env_float("GATEWAY_CANCEL_GRACE", 5.0))
    skip_on_missing_key: bool = True
    proxy_url: str | None = field(default_factory=lambda: os.getenv("GATEWAY_PROXY"))
    providers: List[ProviderConfig] = field(default_factory=list)

    def build_context(self) -> GatewayContext:
        return GatewayContext(
            cache=TranslationCache(capacity=self.cache.capacity, ttl=self.cache.ttl),
            rate_limiter=RateLimiter(default_max_wait=self.rate_limit_max_wait),
            retry_policy=self.retry.policy(),
            max_concurrency=self.max_concurrency,
            rate_limit_max_wait=self.rate_limit_max_wait,
            cancel_grace_period=self.cancel_grace_period,
        )


def _lang_pairs(raw: Any, name: str) -> frozenset | None:
    if raw is None:
        return None
    pairs = set()
    for item in raw:
        if isinstance(item, str):
            source, sep, target = item.partition(":")
            if not sep:
                source, target = "*", item
        else:
            try:
                source, target = item
            except (TypeError, ValueError):
                raise ConfigurationError(f"{name}: invalid language pair {item!r}") from None
        pairs.add((source.strip().lower(), target.strip().lower()))
    return frozenset(pairs)


def parse_provider_config(data: Mapping[str, Any]) -> ProviderConfig:
    """Validate one provider entry from a declarative config document."""
    try:
        name = str(data["name"])
        tier = int(data["tier"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Provider entry needs a name and an integer tier: {data!r}") from exc

    rate = data.get("rate_limit") or {}
    try:
        rate_limit = RateLimitConfig(
            requests_per_sec=float(rate.get("requests_per_sec", 5.0)),
            burst=int(rate.get("burst", 5)),
        )
        billing_unit = BillingUnit(data.get("billing_unit", BillingUnit.REQUESTS.value))
        config = ProviderConfig(
            tier=tier,
            name=name,
            engine=str(data.get("engine", name)).lower(),
            supported_lang_pairs=_lang_pairs(data.get("supported_lang_pairs"), name),
            max_batch_size=int(data.get("max_batch_size", 50)),
            max_chars_per_request=int(data.get("max_chars_per_request", 5000)),
            rate_limit=rate_limit,
            billing_unit=billing_unit,
            max_concurrent_requests=int(data.get("max_concurrent_requests", 4)),
            timeout=float(data.get("timeout", 30.0)),
            max_retries=int(data.get("max_retries", 3)),
            credentials_env=data.get("credentials_env"),
            cost_per_million_chars=float(data.get("cost_per_million_chars", 0.0)),
            enabled=bool(data.get("enabled", True)),
            options=tuple(sorted((str(k), str(v)) for k, v in (data.get("options") or {}).items())),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name}: invalid provider settings: {exc}") from exc
    validate_provider_config(config)
    return config


def validate_provider_config(config: ProviderConfig) -> None:
    if config.max_batch_size < 1 or config.max_chars_per_request < 1:
        raise ConfigurationError(f"{config.name}: batch limits must be positive")
    if config.rate_limit.requests_per_sec <= 0 or config.rate_limit.burst < 1:
        raise ConfigurationError(f"{config.name}: rate limit must be positive")
    if config.max_concurrent_requests < 1:
        raise ConfigurationError(f"{config.name}: max_concurrent_requests must be at least 1")
    if config.max_retries < 0:
        raise ConfigurationError(f"{config.name}: max_retries cannot be negative")
    if config.billing_unit is BillingUnit.CHARACTERS and config.rate_limit.burst < config.max_chars_per_request:
        raise ConfigurationError(
            f"{config.name}: character-billed burst ({config.rate_limit.burst}) is smaller than "
            f"max_chars_per_request ({config.max_chars_per_request}); full chunks could never be admitted"
        )


def parse_providers(entries: Iterable[Mapping[str, Any]]) -> List[ProviderConfig]:
    providers = [parse_provider_config(entry) for entry in entries]
    tiers = [provider.tier for provider in providers]
    if len(set(tiers)) != len(tiers):
        raise ConfigurationError(f"Provider tiers must be unique, got {sorted(tiers)}")
    return sorted(providers, key=lambda provider: provider.tier)


def load_settings(path: Path | None = None) -> GatewaySettings:
    """Read a JSON settings document; environment defaults fill the gaps."""
    settings = GatewaySettings()
    if path is None:
        return settings
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot read settings from {path}: {exc}") from exc

    cache = data.get("cache") or {}
    settings.cache = CacheSettings(
        capacity=int(cache.get("capacity", settings.cache.capacity)),
        ttl=float(cache.get("ttl", settings.cache.ttl)),
    )
    retry = data.get("retry") or {}
    settings.retry = RetrySettings(
        max_retries=int(retry.get("max_retries", settings.retry.max_retries)),
        base_delay=float(retry.get("base_delay", settings.retry.base_delay)),
        max_delay=float(retry.get("max_delay", settings.retry.max_delay)),
        multiplier=float(retry.get("multiplier", settings.retry.multiplier)),
        jitter=float(retry.get("jitter", settings.retry.jitter)),
    )
    settings.max_concurrency = int(data.get("max_concurrency", settings.max_concurrency))
    settings.rate_limit_max_wait = float(data.get("rate_limit_max_wait", settings.rate_limit_max_wait))
    settings.cancel_grace_period = float(data.get("cancel_grace_period", settings.cancel_grace_period))
    settings.skip_on_missing_key = bool(data.get("skip_on_missing_key", settings.skip_on_missing_key))
    settings.proxy_url = data.get("proxy_url", settings.proxy_url)
    settings.providers = parse_providers(data.get("providers") or [])
    return settings


SETTINGS = GatewaySettings()
