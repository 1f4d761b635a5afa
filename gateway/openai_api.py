"""
OpenAI chat-completions adapter.

Sends the chunk as a JSON object of ``key -> text`` and asks for the same keys
back, which lets a partial answer resolve the keys it does contain.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Sequence

from .base import HTTPProviderAdapter
from .models import ProviderTranslation, TranslationRequest

LANGUAGE_NAMES = {
    "ar": "Arabic",
    "da": "Danish",
    "de": "German",
    "en": "English",
    "es": "Spanish",
    "fi": "Finnish",
    "fr": "French",
    "he": "Hebrew",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ru": "Russian",
    "sv": "Swedish",
    "tr": "Turkish",
    "zh": "Chinese",
}

SYSTEM_PROMPT = (
    "You are a professional translator specializing in UI text. "
    "Return only a valid JSON object without any markdown formatting."
)

USER_PROMPT = (
    "Translate the values of the following JSON object from {source} to {target}.\n"
    "Requirements:\n"
    "1. Return ONLY a JSON object with exactly the same keys.\n"
    "2. Preserve every placeholder exactly as written, e.g. {{{{count}}}}, {{name}}, %s.\n"
    "3. Keep placeholders in the same position and do not translate their names.\n\n"
    "{payload}"
)


class OpenAITranslator(HTTPProviderAdapter):
    name = "openai"
    max_batch_size = 15
    max_chars_per_request = 12000

    API_URL = "https://api.openai.com/v1/chat/completions"
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        *,
        api_key: str,
        model: str | None = None,
        api_url: str | None = None,
        temperature: float | str = 0.3,
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key=api_key, **kwargs)
        self.model = model or self.DEFAULT_MODEL
        self.api_url = api_url or self.API_URL
        self.temperature = float(temperature)

    def _headers(self) -> Mapping[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def language_name(code: str) -> str:
        if code.lower() == "auto":
            return "the source language"
        return LANGUAGE_NAMES.get(code.lower().split("-")[0], code)

    def build_payload(self, requests: Sequence[TranslationRequest]) -> dict:
        first = requests[0]
        texts = {request.key: request.source_text for request in requests}
        prompt = USER_PROMPT.format(
            source=self.language_name(first.source_lang),
            target=self.language_name(first.target_lang),
            payload=json.dumps(texts, ensure_ascii=False, indent=2),
        )
        return {
            "model": self.model,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }

    def parse_content(self, data: Any) -> Dict[str, Any]:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise self.malformed("no message content") from None
        content = content.strip()
        if content.startswith("```"):
            content = content.strip("`")
            if content.startswith("json"):
                content = content[4:]
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise self.malformed(f"content is not JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise self.malformed("content is not a JSON object")
        return parsed

    async def translate_batch(self, requests: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
        if not requests:
            return []
        self.check_batch(requests)
        data = await self._post_json(self.api_url, self.build_payload(requests))
        translations = self.parse_content(data)
        results: List[ProviderTranslation] = []
        for request in requests:
            value = translations.get(request.key)
            if isinstance(value, str) and value:
                results.append(ProviderTranslation(key=request.key, translated_text=value))
        missing = len(requests) - len(results)
        if missing:
            self.logger.debug("OpenAI omitted %d of %d keys", missing, len(requests))
        return results
