"""Tests for the vendor adapters (network calls mocked)."""
import json
from unittest.mock import AsyncMock, patch

import pytest

from conftest import make_requests
from gateway.base import HTTPProviderAdapter
from gateway.deepl_api import DeepLAPITranslator
from gateway.errors import PermanentProviderError, TransientProviderError
from gateway.google import GoogleTranslator
from gateway.openai_api import OpenAITranslator
from gateway.systran import SystranTranslator


class TestHTTPProviderAdapter:
    """Test shared HTTP behaviour."""

    def test_requires_api_key(self) -> None:
        """An empty key is rejected at construction."""
        with pytest.raises(ValueError):
            GoogleTranslator(api_key="")

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status: int) -> None:
        """Throttling and server errors are transient."""
        error = GoogleTranslator(api_key="k").classify_status(status, "busy", "3")
        assert isinstance(error, TransientProviderError)
        assert error.retry_after == 3.0

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_permanent_statuses(self, status: int) -> None:
        """Client errors abandon the tier."""
        error = SystranTranslator(api_key="k").classify_status(status, "nope")
        assert isinstance(error, PermanentProviderError)
        assert error.status == status

    def test_check_batch_limits(self) -> None:
        """Oversized batches are caller bugs."""
        adapter = SystranTranslator(api_key="k", max_batch_size=1)
        with pytest.raises(ValueError):
            adapter.check_batch(make_requests({"a": "x", "b": "y"}))

    def test_check_batch_mixed_targets(self) -> None:
        """One call serves one target language."""
        adapter = SystranTranslator(api_key="k")
        mixed = make_requests({"a": "x"}) + make_requests({"b": "y"}, target_lang="fr")
        with pytest.raises(ValueError):
            adapter.check_batch(mixed)


class TestDeepLAPITranslator:
    """Test DeepLAPITranslator."""

    def test_plan_from_key(self) -> None:
        """Free keys end with :fx and use the free endpoint."""
        assert DeepLAPITranslator(api_key="abc:fx").api_url == DeepLAPITranslator.FREE_API_URL
        assert DeepLAPITranslator(api_key="abc").api_url == DeepLAPITranslator.PRO_API_URL

    def test_payload(self) -> None:
        """Languages are mapped to DeepL codes."""
        adapter = DeepLAPITranslator(api_key="abc")
        payload = adapter.build_payload(make_requests({"a": "Hello"}, target_lang="en"))
        assert payload["target_lang"] == "EN-US"
        assert payload["source_lang"] == "EN"
        assert payload["text"] == ["Hello"]

    @pytest.mark.parametrize("status", [403, 456])
    def test_quota_and_auth_are_permanent(self, status: int) -> None:
        """Quota exhaustion and bad keys abandon the tier."""
        error = DeepLAPITranslator(api_key="abc").classify_status(status, "")
        assert isinstance(error, PermanentProviderError)

    @pytest.mark.asyncio
    async def test_translate_batch(self) -> None:
        """Translations are matched to keys by position."""
        adapter = DeepLAPITranslator(api_key="abc")
        response = {"translations": [{"text": "Hallo"}, {"text": "Welt"}]}
        with patch.object(adapter, "_post_json", AsyncMock(return_value=response)) as post:
            results = await adapter.translate_batch(make_requests({"a": "Hello", "b": "World"}))
        assert [(r.key, r.translated_text) for r in results] == [("a", "Hallo"), ("b", "Welt")]
        post.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_short_response_is_partial(self) -> None:
        """A short response resolves only the keys it covers."""
        adapter = DeepLAPITranslator(api_key="abc")
        response = {"translations": [{"text": "Hallo"}]}
        with patch.object(adapter, "_post_json", AsyncMock(return_value=response)):
            results = await adapter.translate_batch(make_requests({"a": "Hello", "b": "World"}))
        assert [r.key for r in results] == ["a"]

    @pytest.mark.asyncio
    async def test_malformed_response(self) -> None:
        """A response without translations is transient."""
        adapter = DeepLAPITranslator(api_key="abc")
        with patch.object(adapter, "_post_json", AsyncMock(return_value={"message": "?"})):
            with pytest.raises(TransientProviderError):
                await adapter.translate_batch(make_requests({"a": "Hello"}))

    @pytest.mark.asyncio
    async def test_mixed_sources_rejected(self) -> None:
        """DeepL takes one source language per call."""
        adapter = DeepLAPITranslator(api_key="abc")
        mixed = make_requests({"a": "Hello"}) + make_requests({"b": "Bonjour"}, source_lang="fr")
        with pytest.raises(ValueError):
            await adapter.translate_batch(mixed)


class TestGoogleTranslator:
    """Test GoogleTranslator."""

    def test_throttling_403_is_transient(self) -> None:
        """Google reports quota throttling as 403."""
        error = GoogleTranslator(api_key="k").classify_status(403, '{"reason": "userRateLimitExceeded"}')
        assert isinstance(error, TransientProviderError)

    @pytest.mark.asyncio
    async def test_translate_batch_unescapes(self) -> None:
        """HTML entities in results are decoded."""
        adapter = GoogleTranslator(api_key="k")
        response = {"data": {"translations": [{"translatedText": "Tom &amp; Jerry"}]}}
        with patch.object(adapter, "_post_json", AsyncMock(return_value=response)) as post:
            results = await adapter.translate_batch(make_requests({"a": "Tom & Jerry"}))
        assert results[0].translated_text == "Tom & Jerry"
        assert post.await_args.kwargs["params"] == {"key": "k"}


class TestSystranTranslator:
    """Test SystranTranslator."""

    @pytest.mark.asyncio
    async def test_item_errors_skipped(self) -> None:
        """Per-item errors leave those keys unproduced."""
        adapter = SystranTranslator(api_key="k")
        response = {"outputs": [{"output": "Hallo"}, {"error": "unsupported"}]}
        with patch.object(adapter, "_post_json", AsyncMock(return_value=response)):
            results = await adapter.translate_batch(make_requests({"a": "Hello", "b": "World"}))
        assert [r.key for r in results] == ["a"]


class TestOpenAITranslator:
    """Test OpenAITranslator."""

    def test_payload_carries_keys(self) -> None:
        """The prompt embeds the key to text mapping."""
        adapter = OpenAITranslator(api_key="sk-test", model="gpt-test")
        payload = adapter.build_payload(make_requests({"greeting": "Hello {name}"}))
        assert payload["model"] == "gpt-test"
        assert payload["response_format"] == {"type": "json_object"}
        assert '"greeting": "Hello {name}"' in payload["messages"][1]["content"]
        assert "German" in payload["messages"][1]["content"]

    def test_parse_content_strips_fences(self) -> None:
        """Markdown code fences around the JSON are tolerated."""
        adapter = OpenAITranslator(api_key="sk-test")
        data = {"choices": [{"message": {"content": '```json\n{"a": "Hallo"}\n```'}}]}
        assert adapter.parse_content(data) == {"a": "Hallo"}

    def test_parse_content_rejects_garbage(self) -> None:
        """Non-JSON content is a transient error."""
        adapter = OpenAITranslator(api_key="sk-test")
        with pytest.raises(TransientProviderError):
            adapter.parse_content({"choices": [{"message": {"content": "Sorry, I can't"}}]})

    @pytest.mark.asyncio
    async def test_missing_keys_are_partial(self) -> None:
        """Keys absent from the answer are left for the orchestrator."""
        adapter = OpenAITranslator(api_key="sk-test")
        content = json.dumps({"a": "Hallo"})
        response = {"choices": [{"message": {"content": content}}]}
        with patch.object(adapter, "_post_json", AsyncMock(return_value=response)):
            results = await adapter.translate_batch(make_requests({"a": "Hello", "b": "World"}))
        assert [(r.key, r.translated_text) for r in results] == [("a", "Hallo")]

    def test_is_http_adapter(self) -> None:
        """All vendors share the HTTP base."""
        assert issubclass(OpenAITranslator, HTTPProviderAdapter)
