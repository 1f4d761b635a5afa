"""Tests for the per-tier batch orchestrator."""
from typing import List, Sequence

import pytest

from conftest import StubAdapter, make_context, make_requests, make_tier
from gateway.errors import PermanentProviderError, PlaceholderMismatch, TransientProviderError
from gateway.models import FailureReason, OutcomeStatus, ProviderTranslation, RateLimitConfig, TranslationRequest
from gateway.orchestrator import BatchOrchestrator, validate_placeholders
from gateway.retry import RetryPolicy
from gateway.state import FallbackChainState


class TestValidatePlaceholders:
    """Test validate_placeholders."""

    def test_accepts_matching(self) -> None:
        """Matching placeholders pass silently."""
        request = TranslationRequest.create("k", "{n} items", source_lang="en", target_lang="de")
        validate_placeholders(request, "{n} Elemente")

    def test_rejects_missing(self) -> None:
        """A lost placeholder raises PlaceholderMismatch."""
        request = TranslationRequest.create("k", "{n} items", source_lang="en", target_lang="de")
        with pytest.raises(PlaceholderMismatch) as exc_info:
            validate_placeholders(request, "Elemente")
        assert exc_info.value.expected == ["{n}"]

    def test_plain_constructor_derives_tokens(self) -> None:
        """Without declared tokens the request carries the source placeholders."""
        request = TranslationRequest(key="a", source_text="Hello {name}", source_lang="en", target_lang="de")
        assert request.placeholder_tokens == ("{name}",)
        validate_placeholders(request, "Hallo {name}")

    def test_declared_empty_tokens_kept(self) -> None:
        """An explicit empty tuple is not replaced by extraction."""
        request = TranslationRequest(
            key="a", source_text="100%s done", source_lang="en", target_lang="de", placeholder_tokens=()
        )
        assert request.placeholder_tokens == ()


class TestBatchOrchestrator:
    """Test BatchOrchestrator.run."""

    @pytest.mark.asyncio
    async def test_translates_all(self, context) -> None:
        """A healthy provider resolves every key in one call."""
        adapter = StubAdapter("deepl")
        requests = make_requests({"a": "One", "b": "Two"})
        result = await BatchOrchestrator(context).run(requests, make_tier(1, adapter))
        assert [outcome.key for outcome in result.outcomes] == ["a", "b"]
        assert all(outcome.status is OutcomeStatus.TRANSLATED for outcome in result.outcomes)
        assert result.unresolved == []
        assert adapter.call_count == 1

    @pytest.mark.asyncio
    async def test_plain_request_with_placeholders_translated(self, context) -> None:
        """A faithful translation of a directly constructed request is accepted."""
        request = TranslationRequest(key="a", source_text="Hello {name}", source_lang="en", target_lang="de")
        result = await BatchOrchestrator(context).run([request], make_tier(1, StubAdapter("tier1")))
        assert result.unresolved == []
        assert result.outcomes[0].status is OutcomeStatus.TRANSLATED
        assert result.outcomes[0].translated_text == "Hello {name} [tier1]"

    @pytest.mark.asyncio
    async def test_duplicate_texts_sent_once(self, context) -> None:
        """Keys sharing a source text share one provider slot."""
        adapter = StubAdapter("deepl")
        requests = make_requests({"a": "Save", "b": "Save", "c": "Cancel"})
        state = FallbackChainState(requests)
        result = await BatchOrchestrator(context).run(requests, make_tier(1, adapter), state=state)
        assert adapter.calls == [["a", "c"]]
        assert {outcome.key for outcome in result.outcomes} == {"a", "b", "c"}
        assert state.outcomes["b"].translated_text == "Save [deepl]"

    @pytest.mark.asyncio
    async def test_chunks_by_batch_size(self, context) -> None:
        """Chunks respect max_batch_size."""
        adapter = StubAdapter("deepl")
        requests = make_requests({f"k{i}": f"text {i}" for i in range(5)})
        await BatchOrchestrator(context).run(requests, make_tier(1, adapter, max_batch_size=2))
        assert sorted(len(call) for call in adapter.calls) == [1, 2, 2]

    @pytest.mark.asyncio
    async def test_groups_by_source_language(self, context) -> None:
        """Different source languages never share a chunk."""
        adapter = StubAdapter("deepl")
        requests = make_requests({"a": "Hello"}) + make_requests({"b": "Bonjour"}, source_lang="fr")
        await BatchOrchestrator(context).run(requests, make_tier(1, adapter))
        assert sorted(adapter.calls) == [["a"], ["b"]]

    @pytest.mark.asyncio
    async def test_oversized_request_left_for_next_tier(self, context) -> None:
        """A text over max_chars_per_request is not sent."""
        adapter = StubAdapter("deepl")
        requests = make_requests({"big": "x" * 50, "small": "ok"})
        result = await BatchOrchestrator(context).run(requests, make_tier(1, adapter, max_chars_per_request=10))
        assert [request.key for request in result.unresolved] == ["big"]
        assert adapter.calls == [["small"]]

    @pytest.mark.asyncio
    async def test_transient_then_success(self, context) -> None:
        """A transient error is retried within the tier."""
        failures = iter([True, False])

        def flaky(batch: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
            if next(failures):
                raise TransientProviderError("503", provider="deepl", status=503)
            return [ProviderTranslation(r.key, "ok") for r in batch]

        adapter = StubAdapter("deepl", flaky)
        requests = make_requests({"a": "Hello"})
        result = await BatchOrchestrator(context).run(requests, make_tier(1, adapter))
        assert adapter.call_count == 2
        assert result.outcomes[0].attempts == 2

    @pytest.mark.asyncio
    async def test_permanent_marks_tier_dead(self, context) -> None:
        """A permanent error abandons the tier for the rest of the job."""

        def refuse(batch: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
            raise PermanentProviderError("401", provider="deepl", status=401)

        adapter = StubAdapter("deepl", refuse)
        requests = make_requests({"a": "Hello", "b": "World"})
        state = FallbackChainState(requests)
        tier = make_tier(1, adapter)
        result = await BatchOrchestrator(context).run(requests, tier, state=state)
        assert {request.key for request in result.unresolved} == {"a", "b"}
        assert state.is_dead(1)
        assert adapter.call_count == 1
        again = await BatchOrchestrator(context).run(requests, tier, state=state)
        assert len(again.unresolved) == 2
        assert adapter.call_count == 1

    @pytest.mark.asyncio
    async def test_partial_response_retries_missing(self, context) -> None:
        """Keys missing from a response are retried on their own."""
        seen = []

        def partial(batch: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
            seen.append([r.key for r in batch])
            return [ProviderTranslation(r.key, "ok") for r in batch if r.key != "b" or len(seen) > 1]

        adapter = StubAdapter("deepl", partial)
        requests = make_requests({"a": "Hello", "b": "World"})
        result = await BatchOrchestrator(context).run(requests, make_tier(1, adapter))
        assert seen == [["a", "b"], ["b"]]
        assert {outcome.key for outcome in result.outcomes} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_placeholder_mismatch_not_cached(self, context) -> None:
        """A translation that loses a placeholder is rejected and not cached."""

        def lossy(batch: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
            return [ProviderTranslation(r.key, "Elemente") for r in batch]

        adapter = StubAdapter("deepl", lossy)
        requests = make_requests({"a": "{n} items"})
        state = FallbackChainState(requests)
        result = await BatchOrchestrator(context).run(requests, make_tier(1, adapter), state=state)
        assert [request.key for request in result.unresolved] == ["a"]
        assert state.failure_for("a")[0] is FailureReason.PLACEHOLDER_MISMATCH
        assert context.cache.stats().writes == 0

    @pytest.mark.asyncio
    async def test_rate_limit_exhaustion_escalates(self) -> None:
        """Unavailable rate-limit tokens hand the chunk to the next tier."""
        context = make_context(rate_limit_max_wait=0.0)
        adapter = StubAdapter("deepl")
        tier = make_tier(1, adapter, rate_limit=RateLimitConfig(requests_per_sec=0.1, burst=1), max_batch_size=1)
        requests = make_requests({"a": "One", "b": "Two"})
        result = await BatchOrchestrator(context).run(requests, tier)
        assert adapter.call_count == 1
        assert len(result.outcomes) == 1
        assert len(result.unresolved) == 1

    @pytest.mark.asyncio
    async def test_provider_max_retries(self) -> None:
        """The provider's max_retries overrides the shared policy."""
        context = make_context(retry_policy=RetryPolicy(max_retries=5, base_delay=0.0, jitter=0.0))

        def down(batch: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
            raise TransientProviderError("502", provider="google", status=502)

        adapter = StubAdapter("google", down)
        requests = make_requests({"a": "Hello"})
        result = await BatchOrchestrator(context).run(requests, make_tier(1, adapter, max_retries=1))
        assert adapter.call_count == 2
        assert len(result.unresolved) == 1
