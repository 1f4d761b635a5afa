"""
DeepL API adapter

Official DeepL v2 API, Free and Pro plans. Free keys end in ``:fx``.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence

from .base import HTTPProviderAdapter
from .errors import PermanentProviderError, TransientProviderError
from .models import ProviderTranslation, TranslationRequest


class DeepLAPITranslator(HTTPProviderAdapter):
    name = "deepl"
    max_batch_size = 50
    max_chars_per_request = 30000

    PRO_API_URL = "https://api.deepl.com/v2/translate"
    FREE_API_URL = "https://api-free.deepl.com/v2/translate"

    LANG_MAP = {
        "auto": None,
        "en": "EN-US",
        "pt": "PT-PT",
        "zh": "ZH",
        "nb": "NB",
        "no": "NB",
    }

    def __init__(
        self,
        *,
        api_key: str,
        plan: str | None = None,
        api_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key=api_key, **kwargs)
        self.plan = (plan or ("free" if api_key.endswith(":fx") else "pro")).lower()
        if api_url:
            self.api_url = api_url
        elif self.plan == "free":
            self.api_url = self.FREE_API_URL
        else:
            self.api_url = self.PRO_API_URL

    def _headers(self) -> Mapping[str, str]:
        return {
            "Authorization": f"DeepL-Auth-Key {self.api_key}",
            "Content-Type": "application/json",
        }

    def _map_lang(self, lang: str, *, source: bool = False) -> Optional[str]:
        code = lang.lower()
        if code == "auto":
            return None
        if source:
            # Source codes never carry a region.
            return code.split("-")[0].upper()
        return self.LANG_MAP.get(code, lang.upper())

    def build_payload(self, requests: Sequence[TranslationRequest]) -> dict:
        first = requests[0]
        payload: dict = {
            "text": [request.source_text for request in requests],
            "target_lang": self._map_lang(first.target_lang),
            "preserve_formatting": True,
        }
        source = self._map_lang(first.source_lang, source=True)
        if source:
            payload["source_lang"] = source
        return payload

    def classify_status(
        self, status: int, body: str, retry_after: str | None = None
    ) -> TransientProviderError | PermanentProviderError:
        if status == 456:
            return PermanentProviderError(f"{self.name}: quota exceeded", provider=self.name, status=status)
        if status == 403:
            return PermanentProviderError(
                f"{self.name}: invalid API key or insufficient permissions", provider=self.name, status=status
            )
        return super().classify_status(status, body, retry_after)

    async def translate_batch(self, requests: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
        if not requests:
            return []
        self.check_batch(requests)
        # DeepL takes one source language per call.
        sources = {request.source_lang.lower() for request in requests}
        if len(sources) > 1:
            raise ValueError(f"{self.name}: batch mixes source languages {sorted(sources)}")

        data = await self._post_json(self.api_url, self.build_payload(requests))
        translations = data.get("translations") if isinstance(data, dict) else None
        if not isinstance(translations, list):
            raise self.malformed("missing 'translations'")
        if len(translations) != len(requests):
            self.logger.warning(
                "DeepL returned %d translations for %d texts", len(translations), len(requests)
            )
        return [
            ProviderTranslation(key=request.key, translated_text=item.get("text", ""))
            for request, item in zip(requests, translations)
            if isinstance(item, dict) and item.get("text")
        ]
