from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from utils.batching import chunk_by_char_limit
from utils.text import placeholders_match

from .cache import CacheEntry, make_cache_key
from .context import CancellationToken, GatewayContext
from .errors import ConfigurationError
from .models import (
    FailureReason,
    JobEstimate,
    OutcomeStatus,
    TranslationOutcome,
    TranslationRequest,
)
from .orchestrator import BatchOrchestrator, ProviderTier
from .state import FallbackChainState


class FallbackRouter:
    """Walk the configured provider tiers in ascending order.

    Cache hits resolve first. Misses go to the lowest eligible tier and only
    the keys a tier could not resolve move on to the next one; a key never
    goes back to a tier it has already passed.
    """

    def __init__(
        self,
        providers: Sequence[ProviderTier],
        context: GatewayContext,
        *,
        orchestrator: BatchOrchestrator | None = None,
    ) -> None:
        tiers = sorted((provider for provider in providers if provider.config.enabled), key=lambda p: p.tier)
        seen: Dict[int, str] = {}
        for provider in tiers:
            if provider.tier in seen:
                raise ConfigurationError(
                    f"Tier {provider.tier} is used by both {seen[provider.tier]} and {provider.name}"
                )
            seen[provider.tier] = provider.name
            context.register_provider(provider.config)
        self.providers: List[ProviderTier] = tiers
        self.context = context
        self.orchestrator = orchestrator or BatchOrchestrator(context)
        if tiers:
            logger.info(
                "FallbackRouter initialized with {} provider(s): {}",
                len(tiers),
                ", ".join(f"{p.name} (tier {p.tier})" for p in tiers),
            )

    def tiers_for(self, target_lang: str) -> List[ProviderTier]:
        tiers = [provider for provider in self.providers if provider.config.supports_target(target_lang)]
        if not tiers:
            raise ConfigurationError(f"No translation providers configured for target language {target_lang!r}")
        return tiers

    def lookup_cached(
        self, request: TranslationRequest, tiers: Sequence[ProviderTier]
    ) -> Optional[Tuple[ProviderTier, CacheEntry]]:
        cache = self.context.cache
        for provider in tiers:
            if not provider.config.supports(request.source_lang, request.target_lang):
                continue
            cache_key = make_cache_key(request.source_text, request.source_lang, request.target_lang, provider.tier)
            entry = cache.get(cache_key)
            if entry is None:
                continue
            if not placeholders_match(request.placeholder_tokens, entry.translated_text):
                continue
            return provider, entry
        return None

    async def translate(
        self,
        requests: Sequence[TranslationRequest],
        target_lang: str,
        *,
        token: CancellationToken | None = None,
        state: FallbackChainState | None = None,
    ) -> List[TranslationOutcome]:
        token = token or CancellationToken()
        state = state if state is not None else FallbackChainState(requests)
        _check_requests(requests, target_lang)
        tiers = self.tiers_for(target_lang)

        for request in requests:
            if not any(p.config.supports(request.source_lang, target_lang) for p in tiers):
                state.resolve(
                    TranslationOutcome.failed(
                        request.key,
                        FailureReason.UNSUPPORTED_LANGUAGE_PAIR,
                        detail=f"no provider supports {request.source_lang}->{target_lang}",
                    )
                )
                continue
            hit = self.lookup_cached(request, tiers)
            if hit is None:
                continue
            _, entry = hit
            state.resolve(
                TranslationOutcome(
                    key=request.key,
                    status=OutcomeStatus.CACHED,
                    translated_text=entry.translated_text,
                    provider_used=entry.provider_name,
                    attempts=0,
                    cache_hit=True,
                )
            )
        logger.info(
            "Translating {} keys to {}: {} resolved up front, {} pending",
            len(requests),
            target_lang,
            len(state.outcomes),
            len(state.unresolved_keys()),
        )

        for provider in tiers:
            if token.cancelled:
                break
            pending = state.unresolved()
            if not pending:
                break
            if state.is_dead(provider.tier):
                continue
            eligible = [r for r in pending if provider.config.supports(r.source_lang, target_lang)]
            if not eligible:
                continue
            logger.info(
                "Attempting {} keys with {} (tier {})", len(eligible), provider.name, provider.tier
            )
            state.attempting((request.key for request in eligible), provider.tier)
            tier_result = await self.orchestrator.run(eligible, provider, state=state, token=token)
            state.escalate(request.key for request in tier_result.unresolved)
            if tier_result.unresolved and not token.cancelled:
                logger.info(
                    "{} (tier {}) left {} keys unresolved",
                    provider.name,
                    provider.tier,
                    len(tier_result.unresolved),
                )

        if token.cancelled:
            state.fail_remaining(FailureReason.CANCELLED, token.reason)
        else:
            state.fail_remaining()
        return state.ordered_outcomes()

    def estimate(self, requests: Sequence[TranslationRequest], target_lang: str) -> JobEstimate:
        """Resolve cache hits and price the misses without any network call."""
        _check_requests(requests, target_lang)
        tiers = self.tiers_for(target_lang)
        estimate = JobEstimate(cached=[], pending_keys=[])
        pending_by_provider: Dict[str, List[TranslationRequest]] = {}
        configs = {provider.name: provider.config for provider in tiers}
        for request in requests:
            hit = self.lookup_cached(request, tiers)
            if hit is not None:
                estimate.cached.append(
                    TranslationOutcome(
                        key=request.key,
                        status=OutcomeStatus.CACHED,
                        translated_text=hit[1].translated_text,
                        provider_used=hit[1].provider_name,
                        cache_hit=True,
                    )
                )
                continue
            estimate.pending_keys.append(request.key)
            first = next((p for p in tiers if p.config.supports(request.source_lang, target_lang)), None)
            if first is None:
                estimate.unroutable_keys.append(request.key)
                continue
            pending_by_provider.setdefault(first.name, []).append(request)

        for name, pending in pending_by_provider.items():
            config = configs[name]
            unique: Dict[Tuple[str, str], TranslationRequest] = {}
            for request in pending:
                unique.setdefault((request.source_text, request.source_lang.lower()), request)
            chars = sum(request.char_count for request in unique.values())
            by_source: Dict[str, List[TranslationRequest]] = {}
            for request in unique.values():
                by_source.setdefault(request.source_lang.lower(), []).append(request)
            calls = sum(
                len(
                    chunk_by_char_limit(
                        group,
                        max_chars=config.max_chars_per_request,
                        max_items=config.max_batch_size,
                        size_of=lambda item: item.char_count,
                    )
                )
                for group in by_source.values()
            )
            estimate.estimated_chars[name] = chars
            estimate.estimated_requests[name] = calls
            estimate.estimated_cost[name] = round(chars * config.cost_per_million_chars / 1_000_000, 6)
        return estimate


def _check_requests(requests: Sequence[TranslationRequest], target_lang: str) -> None:
    keys = [request.key for request in requests]
    if len(set(keys)) != len(keys):
        raise ValueError("Request keys must be unique within a job")
    mismatched = [r.key for r in requests if r.target_lang.lower() != target_lang.lower()]
    if mismatched:
        raise ValueError(f"Requests target a different language than {target_lang!r}: {mismatched[:5]}")
