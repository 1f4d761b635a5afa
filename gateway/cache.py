from __future__ import annotations

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional

from cachetools import TTLCache
from loguru import logger

from .errors import CacheError


def make_cache_key(source_text: str, source_lang: str, target_lang: str, provider_tier: int) -> str:
    payload = json.dumps(
        [source_text, source_lang.lower(), target_lang.lower(), int(provider_tier)],
        ensure_ascii=False,
        separators=(",", ":"),
    ).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


@dataclass(frozen=True, slots=True)
class CacheEntry:
    cache_key: str
    translated_text: str
    provider_tier: int
    provider_name: str
    created_at: float
    last_accessed_at: float
    ttl: float


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    writes: int = 0
    write_failures: int = 0
    single_flight_waits: int = 0
    size: int = 0


@dataclass(slots=True)
class ComputeResult:
    entries: Dict[str, CacheEntry]
    degraded: bool = False


ComputeOne = Callable[[], Awaitable[CacheEntry]]
ComputeMany = Callable[[List[str]], Awaitable[Mapping[str, CacheEntry]]]


class TranslationCache:
    """Bounded LRU cache with TTL expiry and single-flight computation.

    Entries are immutable and the first write for a key wins. Concurrent misses
    for the same key share one in-flight computation; followers receive the
    leader's entry, or nothing when the leader failed.
    """

    def __init__(
        self,
        *,
        capacity: int = 10_000,
        ttl: float = 86_400.0,
        timer: Callable[[], float] = time.monotonic,
        store: MutableMapping[str, CacheEntry] | None = None,
    ) -> None:
        self.capacity = capacity
        self.ttl = ttl
        self._timer = timer
        self._store: MutableMapping[str, CacheEntry] = (
            store if store is not None else TTLCache(maxsize=capacity, ttl=ttl, timer=timer)
        )
        self._flights: Dict[str, asyncio.Future] = {}
        self._stats = CacheStats()

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        entry = self._store.get(cache_key)
        if entry is None:
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        return replace(entry, last_accessed_at=self._timer())

    def __contains__(self, cache_key: str) -> bool:
        return cache_key in self._store

    def __len__(self) -> int:
        return len(self._store)

    def new_entry(self, cache_key: str, translated_text: str, *, provider_tier: int, provider_name: str) -> CacheEntry:
        now = self._timer()
        return CacheEntry(
            cache_key=cache_key,
            translated_text=translated_text,
            provider_tier=provider_tier,
            provider_name=provider_name,
            created_at=now,
            last_accessed_at=now,
            ttl=self.ttl,
        )

    def put(self, entry: CacheEntry) -> bool:
        """Store ``entry`` unless the key exists. Returns False when the write failed."""
        try:
            self._write(entry)
        except CacheError as exc:
            self._stats.write_failures += 1
            logger.warning("{} ({} will be recomputed on next access)", exc, entry.cache_key[:12])
            return False
        return True

    def _write(self, entry: CacheEntry) -> None:
        try:
            if entry.cache_key in self._store:
                return
            self._store[entry.cache_key] = entry
        except Exception as exc:
            raise CacheError(f"cache write failed: {exc}") from exc
        self._stats.writes += 1

    async def get_or_compute(self, cache_key: str, compute_fn: ComputeOne) -> CacheEntry:
        entry = self.get(cache_key)
        if entry is not None:
            return entry
        flight = self._flights.get(cache_key)
        if flight is not None:
            self._stats.single_flight_waits += 1
            result = await asyncio.shield(flight)
            if isinstance(result, BaseException):
                raise result
            return result
        flight = asyncio.get_running_loop().create_future()
        self._flights[cache_key] = flight
        try:
            entry = await compute_fn()
        except BaseException as exc:
            flight.set_result(exc)
            raise
        finally:
            self._flights.pop(cache_key, None)
        self.put(entry)
        flight.set_result(entry)
        return entry

    async def get_or_compute_many(self, cache_keys: Iterable[str], compute_fn: ComputeMany) -> ComputeResult:
        """Batch form of :meth:`get_or_compute`.

        ``compute_fn`` receives only the keys this caller leads and returns the
        entries it produced; keys it leaves out are reported as missing. Its
        exceptions propagate to this caller, while followers see the key as
        missing.
        """
        result = ComputeResult(entries={})
        lead: List[str] = []
        follow: Dict[str, asyncio.Future] = {}
        loop = asyncio.get_running_loop()
        for key in dict.fromkeys(cache_keys):
            entry = self.get(key)
            if entry is not None:
                result.entries[key] = entry
            elif key in self._flights:
                follow[key] = self._flights[key]
            else:
                self._flights[key] = loop.create_future()
                lead.append(key)

        if lead:
            computed: Mapping[str, CacheEntry] = {}
            try:
                computed = await compute_fn(list(lead))
            finally:
                for key in lead:
                    flight = self._flights.pop(key, None)
                    entry = computed.get(key)
                    if entry is not None:
                        if not self.put(entry):
                            result.degraded = True
                        result.entries[key] = entry
                    if flight is not None and not flight.done():
                        flight.set_result(entry)

        for key, flight in follow.items():
            self._stats.single_flight_waits += 1
            entry = await asyncio.shield(flight)
            if isinstance(entry, CacheEntry):
                result.entries[key] = entry
        return result

    def stats(self) -> CacheStats:
        self._stats.size = len(self._store)
        return replace(self._stats)

    def clear(self) -> None:
        self._store.clear()

