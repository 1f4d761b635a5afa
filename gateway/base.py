from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional, Sequence

import aiohttp

from .errors import PermanentProviderError, TransientProviderError
from .models import ProviderTranslation, TranslationRequest

RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class ProviderAdapter(ABC):
    """Uniform interface over one external translation vendor.

    Adapters only talk to the network. Caching, rate limiting and retries are
    the orchestrator's job.
    """

    name: str = "base"
    max_batch_size: int = 50
    max_chars_per_request: int = 5000

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        proxy: str | None = None,
        max_batch_size: int | None = None,
        max_chars_per_request: int | None = None,
    ) -> None:
        self.timeout = timeout
        self.proxy = proxy
        if max_batch_size is not None:
            self.max_batch_size = max_batch_size
        if max_chars_per_request is not None:
            self.max_chars_per_request = max_chars_per_request

    @abstractmethod
    async def translate_batch(self, requests: Sequence[TranslationRequest]) -> List[ProviderTranslation]:
        """Translate one chunk. Keys missing from the result were not produced."""

    async def close(self) -> None:
        return None

    def check_batch(self, requests: Sequence[TranslationRequest]) -> None:
        if len(requests) > self.max_batch_size:
            raise ValueError(
                f"{self.name}: batch of {len(requests)} exceeds max_batch_size={self.max_batch_size}"
            )
        chars = sum(request.char_count for request in requests)
        if chars > self.max_chars_per_request:
            raise ValueError(
                f"{self.name}: batch of {chars} chars exceeds max_chars_per_request={self.max_chars_per_request}"
            )
        targets = {request.target_lang for request in requests}
        if len(targets) > 1:
            raise ValueError(f"{self.name}: batch mixes target languages {sorted(targets)}")


class HTTPProviderAdapter(ProviderAdapter):
    """Base for adapters speaking JSON over HTTP with a lazily created aiohttp session."""

    def __init__(self, *, api_key: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not api_key:
            raise ValueError(f"{self.name}: API key is required")
        self.api_key = api_key
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = logging.getLogger(self.__class__.__name__)

    def _headers(self) -> Mapping[str, str]:
        return {"Content-Type": "application/json"}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(headers=dict(self._headers()), timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _post_json(self, url: str, payload: Any, *, params: Mapping[str, str] | None = None) -> Any:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload, params=params, proxy=self.proxy) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise self.classify_status(resp.status, body, resp.headers.get("Retry-After"))
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as exc:
            raise TransientProviderError(f"{self.name}: request timed out", provider=self.name) from exc
        except aiohttp.ClientError as exc:
            raise TransientProviderError(f"{self.name}: connection error: {exc}", provider=self.name) from exc

    def classify_status(
        self, status: int, body: str, retry_after: str | None = None
    ) -> TransientProviderError | PermanentProviderError:
        message = f"{self.name}: HTTP {status} - {body[:200]}"
        if status in RETRYABLE_STATUSES:
            return TransientProviderError(
                message, provider=self.name, status=status, retry_after=_parse_retry_after(retry_after)
            )
        return PermanentProviderError(message, provider=self.name, status=status)

    def malformed(self, detail: str) -> TransientProviderError:
        return TransientProviderError(f"{self.name}: malformed response: {detail}", provider=self.name)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
