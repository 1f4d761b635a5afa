from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Mapping, Sequence, Tuple

from loguru import logger

from utils.batching import chunk_by_char_limit, halve
from utils.text import extract_placeholders, placeholders_match

from .base import ProviderAdapter
from .cache import CacheEntry, make_cache_key
from .context import CancellationToken, GatewayContext
from .errors import PermanentProviderError, PlaceholderMismatch, RateLimitExceeded, TransientProviderError
from .models import (
    FailureReason,
    OutcomeStatus,
    ProviderConfig,
    TranslationOutcome,
    TranslationRequest,
)
from .retry import Decision, ErrorClass, Escalate, RetryAfter, RetryPolicy, ShrinkAndRetry
from .state import FallbackChainState


@dataclass(slots=True)
class ProviderTier:
    config: ProviderConfig
    adapter: ProviderAdapter

    @property
    def tier(self) -> int:
        return self.config.tier

    @property
    def name(self) -> str:
        return self.config.name


@dataclass(slots=True)
class PendingEntry:
    cache_key: str
    request: TranslationRequest
    requests: List[TranslationRequest]


@dataclass(slots=True)
class ChunkWork:
    entries: List[PendingEntry]
    failures: int = 0
    shrunk: bool = False

    def all_requests(self) -> List[TranslationRequest]:
        return [request for entry in self.entries for request in entry.requests]


@dataclass(slots=True)
class TierRunResult:
    outcomes: List[TranslationOutcome] = field(default_factory=list)
    unresolved: List[TranslationRequest] = field(default_factory=list)


def validate_placeholders(request: TranslationRequest, translated_text: str) -> None:
    """Quality gate: the translation must carry exactly the source placeholder multiset."""
    if not placeholders_match(request.placeholder_tokens, translated_text):
        raise PlaceholderMismatch(request.key, request.placeholder_tokens, extract_placeholders(translated_text))


class BatchOrchestrator:
    """Drive one provider tier over a set of requests.

    Requests sharing a cache key are sent once. Chunks run concurrently under
    the provider's and the global semaphore, each dispatch takes rate-limit
    tokens first, and failures follow the retry policy until the chunk is
    translated or handed back as unresolved.
    """

    def __init__(self, context: GatewayContext) -> None:
        self.context = context

    async def run(
        self,
        requests: Sequence[TranslationRequest],
        provider: ProviderTier,
        *,
        state: FallbackChainState | None = None,
        token: CancellationToken | None = None,
    ) -> TierRunResult:
        state = state if state is not None else FallbackChainState(requests)
        token = token or CancellationToken()
        result = TierRunResult()
        if not requests:
            return result
        if state.is_dead(provider.tier):
            result.unresolved.extend(requests)
            return result

        config = provider.config
        self.context.register_provider(config)
        policy = self.context.policy_for(config)
        grouped: Dict[str, PendingEntry] = {}
        for request in requests:
            if request.char_count > config.max_chars_per_request:
                logger.warning(
                    "{}: key {} has {} chars, over max_chars_per_request={}; skipping tier",
                    provider.name,
                    request.key,
                    request.char_count,
                    config.max_chars_per_request,
                )
                result.unresolved.append(request)
                continue
            cache_key = make_cache_key(request.source_text, request.source_lang, request.target_lang, provider.tier)
            entry = grouped.get(cache_key)
            if entry is None:
                grouped[cache_key] = PendingEntry(cache_key=cache_key, request=request, requests=[request])
            else:
                entry.requests.append(request)

        by_source: Dict[str, List[PendingEntry]] = {}
        for entry in grouped.values():
            by_source.setdefault(entry.request.source_lang.lower(), []).append(entry)
        chunks: List[List[PendingEntry]] = []
        for entries in by_source.values():
            chunks.extend(
                chunk_by_char_limit(
                    entries,
                    max_chars=config.max_chars_per_request,
                    max_items=config.max_batch_size,
                    size_of=lambda item: item.request.char_count,
                )
            )
        logger.debug(
            "{} (tier {}): {} keys, {} unique texts, {} chunks",
            provider.name,
            provider.tier,
            len(requests),
            len(grouped),
            len(chunks),
        )

        tasks = [
            asyncio.create_task(self._run_chunk(provider, policy, ChunkWork(chunk), state, token, result))
            for chunk in chunks
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        return result

    async def _run_chunk(
        self,
        provider: ProviderTier,
        policy: RetryPolicy,
        work: ChunkWork,
        state: FallbackChainState,
        token: CancellationToken,
        result: TierRunResult,
    ) -> None:
        queue: Deque[ChunkWork] = deque([work])
        while queue:
            work = queue.popleft()
            if token.cancelled or state.is_dead(provider.tier):
                result.unresolved.extend(work.all_requests())
                continue

            decision: Decision
            try:
                produced, rejected = await self._dispatch(provider, work, state, token)
            except RateLimitExceeded as exc:
                logger.info("{}", exc)
                decision = policy.next(work.failures + 1, ErrorClass.RATE_LIMITED)
            except TransientProviderError as exc:
                logger.info("{} (attempt {})", exc, work.failures + 1)
                decision = policy.next(
                    work.failures + 1,
                    ErrorClass.TRANSIENT,
                    shrunk=work.shrunk,
                    chunk_size=len(work.entries),
                    retry_after=exc.retry_after,
                )
            except PermanentProviderError as exc:
                if not state.is_dead(provider.tier):
                    logger.warning("{}; abandoning tier {} for this job", exc, provider.tier)
                state.mark_dead(provider.tier)
                decision = policy.next(work.failures + 1, ErrorClass.PERMANENT)
            else:
                if token.cancelled:
                    result.unresolved.extend(work.all_requests())
                    continue
                missing = self._collect(provider, work, produced, rejected, state, result)
                if not missing:
                    continue
                work = ChunkWork(missing, failures=work.failures, shrunk=work.shrunk)
                decision = policy.next(
                    work.failures + 1,
                    ErrorClass.TRANSIENT,
                    shrunk=work.shrunk,
                    chunk_size=len(work.entries),
                )
            await self._apply(decision, work, provider, state, token, queue, result)

    async def _dispatch(
        self,
        provider: ProviderTier,
        work: ChunkWork,
        state: FallbackChainState,
        token: CancellationToken,
    ) -> Tuple[Dict[str, CacheEntry], Dict[str, str]]:
        config = provider.config
        cache = self.context.cache
        by_key = {entry.cache_key: entry for entry in work.entries}
        rejected: Dict[str, str] = {}

        async def compute(lead_keys: List[str]) -> Mapping[str, CacheEntry]:
            lead = [by_key[key] for key in lead_keys]
            batch = [entry.request for entry in lead]
            chars = sum(request.char_count for request in batch)
            async with self.context.provider_semaphore(provider.name), self.context.global_semaphore:
                if token.cancelled:
                    return {}
                if state.is_dead(provider.tier):
                    raise PermanentProviderError(f"{provider.name}: tier already abandoned", provider=provider.name)
                await self.context.rate_limiter.acquire(
                    provider.name,
                    config.weight_for(chars),
                    self.context.rate_limit_max_wait,
                )
                state.record_call(provider.name, chars)
                translations = await provider.adapter.translate_batch(batch)

            texts = {item.key: item.translated_text for item in translations}
            entries: Dict[str, CacheEntry] = {}
            for entry in lead:
                text = texts.get(entry.request.key)
                if text is None:
                    continue
                try:
                    validate_placeholders(entry.request, text)
                except PlaceholderMismatch as exc:
                    logger.warning("{}: {}; not caching", provider.name, exc)
                    rejected[entry.cache_key] = f"{provider.name}: {exc}"
                    continue
                entries[entry.cache_key] = cache.new_entry(
                    entry.cache_key, text, provider_tier=provider.tier, provider_name=provider.name
                )
            return entries

        for request in work.all_requests():
            state.attempts[request.key] += 1
        lookup = await cache.get_or_compute_many(list(by_key), compute)
        if lookup.degraded:
            state.add_warning("translation cache write failed; affected keys will be recomputed")
        return lookup.entries, rejected

    def _collect(
        self,
        provider: ProviderTier,
        work: ChunkWork,
        produced: Mapping[str, CacheEntry],
        rejected: Mapping[str, str],
        state: FallbackChainState,
        result: TierRunResult,
    ) -> List[PendingEntry]:
        missing: List[PendingEntry] = []
        for entry in work.entries:
            cached = produced.get(entry.cache_key)
            if cached is not None:
                for request in entry.requests:
                    # store hits and single-flight results were checked against another caller's tokens
                    try:
                        validate_placeholders(request, cached.translated_text)
                    except PlaceholderMismatch as exc:
                        logger.warning("{}: {}; cached translation rejected", provider.name, exc)
                        state.note_failure(
                            request.key, FailureReason.PLACEHOLDER_MISMATCH, f"{provider.name}: {exc}"
                        )
                        result.unresolved.append(request)
                        continue
                    outcome = TranslationOutcome(
                        key=request.key,
                        status=OutcomeStatus.TRANSLATED,
                        translated_text=cached.translated_text,
                        provider_used=cached.provider_name,
                        attempts=state.attempts[request.key],
                    )
                    if state.resolve(outcome):
                        result.outcomes.append(outcome)
            elif entry.cache_key in rejected:
                for request in entry.requests:
                    state.note_failure(
                        request.key, FailureReason.PLACEHOLDER_MISMATCH, rejected[entry.cache_key]
                    )
                    result.unresolved.append(request)
            else:
                missing.append(entry)
        return missing

    async def _apply(
        self,
        decision: Decision,
        work: ChunkWork,
        provider: ProviderTier,
        state: FallbackChainState,
        token: CancellationToken,
        queue: Deque[ChunkWork],
        result: TierRunResult,
    ) -> None:
        failures = work.failures + 1
        if isinstance(decision, RetryAfter):
            logger.debug("{}: retrying {} texts in {:.2f}s", provider.name, len(work.entries), decision.delay)
            if await token.sleep(decision.delay):
                queue.append(ChunkWork(work.entries, failures=failures, shrunk=work.shrunk))
            else:
                result.unresolved.extend(work.all_requests())
        elif isinstance(decision, ShrinkAndRetry):
            logger.debug("{}: shrinking chunk of {} texts", provider.name, len(work.entries))
            for half in halve(work.entries):
                queue.append(ChunkWork(half, failures=failures, shrunk=True))
        elif isinstance(decision, Escalate):
            logger.info(
                "{} (tier {}): escalating {} texts ({})",
                provider.name,
                provider.tier,
                len(work.entries),
                decision.reason,
            )
            for request in work.all_requests():
                state.note_failure(
                    request.key,
                    FailureReason.ALL_PROVIDERS_EXHAUSTED,
                    f"{provider.name}: {decision.reason}",
                )
            result.unresolved.extend(work.all_requests())
