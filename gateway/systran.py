"""
Systran Translate adapter.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Sequence

from .base import HTTPProviderAdapter
from .models import ProviderTranslation, TranslationRequest


class SystranTranslator(HTTPProviderAdapter):
    name = "systran"
    max_batch_size = 50
    max_chars_per_request = 20000

    API_URL = "https://api-translate.systran.net/translation/text/translate"

    def __init__(self, *, api_key: str, api_url: str | None = None, **kwargs: Any) -> None:
        super().__init__(api_key=api_key, **kwargs)
        self.api_url = api_url or self.API_URL

    def _headers(self) -> Mapping[str, str]:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, requests: Sequence[TranslationRequest]) -> dict:
        first = requests[0]
        return {
            "input": [request.source_text for request in requests],
            "source": first.source_lang,
            "target": first.target_lang,
        }

    async def translate_batch(self, requests: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
        if not requests:
            return []
        self.check_batch(requests)
        data = await self._post_json(self.api_url, self.build_payload(requests))
        outputs = data.get("outputs") if isinstance(data, dict) else None
        if not isinstance(outputs, list):
            raise self.malformed("missing 'outputs'")
        results: List[ProviderTranslation] = []
        for request, item in zip(requests, outputs):
            # Per-item errors come back inline; those keys are simply not produced.
            if not isinstance(item, dict) or item.get("error"):
                continue
            if item.get("output"):
                results.append(ProviderTranslation(key=request.key, translated_text=item["output"]))
        return results
