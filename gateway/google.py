"""
Google Cloud Translation adapter (v2 REST API, API-key auth).
"""
from __future__ import annotations

import html
from typing import Any, List, Sequence

from .base import HTTPProviderAdapter
from .errors import PermanentProviderError, TransientProviderError
from .models import ProviderTranslation, TranslationRequest


class GoogleTranslator(HTTPProviderAdapter):
    name = "google"
    max_batch_size = 100
    max_chars_per_request = 30000

    API_URL = "https://translation.googleapis.com/language/translate/v2"

    def __init__(self, *, api_key: str, api_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(api_key=api_key, **kwargs)
        self.api_url = api_url or self.API_URL

    def build_payload(self, requests: Sequence[TranslationRequest]) -> dict:
        first = requests[0]
        payload = {
            "q": [request.source_text for request in requests],
            "target": first.target_lang,
            "format": "text",
        }
        if first.source_lang.lower() != "auto":
            payload["source"] = first.source_lang
        return payload

    def classify_status(
        self, status: int, body: str, retry_after: str | None = None
    ) -> TransientProviderError | PermanentProviderError:
        # Google reports quota throttling as 403 rateLimitExceeded / userRateLimitExceeded.
        if status == 403 and "ratelimitexceeded" in body.lower():
            return TransientProviderError(f"{self.name}: throttled", provider=self.name, status=status)
        return super().classify_status(status, body, retry_after)

    async def translate_batch(self, requests: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
        if not requests:
            return []
        self.check_batch(requests)
        data = await self._post_json(self.api_url, self.build_payload(requests), params={"key": self.api_key})
        try:
            translations = data["data"]["translations"]
        except (KeyError, TypeError):
            raise self.malformed("missing 'data.translations'") from None
        if len(translations) != len(requests):
            self.logger.warning(
                "Google returned %d translations for %d texts", len(translations), len(requests)
            )
        results: List[ProviderTranslation] = []
        for request, item in zip(requests, translations):
            text = item.get("translatedText") if isinstance(item, dict) else None
            if text:
                results.append(ProviderTranslation(key=request.key, translated_text=html.unescape(text)))
        return results
