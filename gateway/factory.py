"""
Provider factory

Builds adapters from ProviderConfig entries and assembles the router.
Supports: DeepL, Google Cloud Translation, OpenAI, Systran
"""
from __future__ import annotations

import os
from typing import Dict, List, Mapping, Optional, Sequence, Type

from loguru import logger

from .base import ProviderAdapter
from .context import GatewayContext
from .deepl_api import DeepLAPITranslator
from .errors import ConfigurationError
from .google import GoogleTranslator
from .models import ProviderConfig
from .openai_api import OpenAITranslator
from .orchestrator import ProviderTier
from .router import FallbackRouter
from .systran import SystranTranslator


AVAILABLE_ENGINES: Dict[str, Type[ProviderAdapter]] = {
    "systran": SystranTranslator,
    "deepl": DeepLAPITranslator,
    "google": GoogleTranslator,
    "openai": OpenAITranslator,
}

DEFAULT_CREDENTIALS_ENV = {
    "systran": "SYSTRAN_API_KEY",
    "deepl": "DEEPL_API_KEY",
    "google": "GOOGLE_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def get_available_engines() -> List[str]:
    return list(AVAILABLE_ENGINES)


def resolve_api_key(config: ProviderConfig, environ: Mapping[str, str] | None = None) -> Optional[str]:
    env = os.environ if environ is None else environ
    engine = (config.engine or config.name).lower()
    variable = config.credentials_env or DEFAULT_CREDENTIALS_ENV.get(engine)
    if not variable:
        return None
    return env.get(variable) or None


def build_adapter(
    config: ProviderConfig,
    *,
    api_key: str | None = None,
    proxy: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProviderAdapter:
    """Build the adapter for ``config.engine`` (falls back to ``config.name``).

    Raises:
        ConfigurationError: unknown engine or missing API key
    """
    engine = (config.engine or config.name).lower()
    adapter_cls = AVAILABLE_ENGINES.get(engine)
    if adapter_cls is None:
        raise ConfigurationError(f"Unsupported translation engine: {engine}")
    key = api_key or resolve_api_key(config, environ)
    if not key:
        raise ConfigurationError(
            f"{config.name}: API key not found. Set {config.credentials_env or DEFAULT_CREDENTIALS_ENV[engine]}"
        )
    options = dict(config.options)
    try:
        return adapter_cls(
            api_key=key,
            timeout=config.timeout,
            proxy=proxy,
            max_batch_size=config.max_batch_size,
            max_chars_per_request=config.max_chars_per_request,
            **options,
        )
    except TypeError as exc:
        raise ConfigurationError(f"{config.name}: invalid options {sorted(options)}: {exc}") from exc


def build_provider_tiers(
    configs: Sequence[ProviderConfig],
    *,
    skip_on_missing_key: bool = True,
    proxy: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> List[ProviderTier]:
    tiers: List[ProviderTier] = []
    for config in sorted(configs, key=lambda item: item.tier):
        if not config.enabled:
            logger.info("{} skipped (disabled in config)", config.name)
            continue
        key = resolve_api_key(config, environ)
        if not key and skip_on_missing_key:
            logger.info("{} skipped (no API key configured)", config.name)
            continue
        adapter = build_adapter(config, api_key=key, proxy=proxy, environ=environ)
        logger.info("{} translator initialized (tier {})", config.name, config.tier)
        tiers.append(ProviderTier(config=config, adapter=adapter))
    if not tiers:
        raise ConfigurationError("No translation providers available. Configure at least one API key.")
    return tiers


def build_router(
    configs: Sequence[ProviderConfig],
    context: GatewayContext | None = None,
    *,
    skip_on_missing_key: bool = True,
    proxy: str | None = None,
) -> FallbackRouter:
    tiers = build_provider_tiers(configs, skip_on_missing_key=skip_on_missing_key, proxy=proxy)
    return FallbackRouter(tiers, context or GatewayContext())
