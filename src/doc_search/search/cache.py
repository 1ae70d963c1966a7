"""In-process result cache with TTL, stale grace and LRU eviction.

Mutations never await, so the event loop gives each one exclusive access
without locks.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from doc_search.config import get_cache_max_entries, get_cache_stale_grace, get_cache_ttl
from doc_search.models.search import SearchFilters, SearchOptions, SearchResult

logger = logging.getLogger(__name__)

MAX_CACHEABLE_QUERY_CHARS = 2000
MAX_CACHEABLE_DOCUMENT_IDS = 50
MAX_CACHEABLE_TOP_K = 50


@dataclass(frozen=True)
class CacheEntry:
    """One cached result set."""

    key: str
    organization_id: str
    results: tuple[SearchResult, ...]
    stored_at: float


def cache_key(query: str, filters: SearchFilters, options: SearchOptions) -> str:
    """sha256 over the normalized (query, filters, options) triple."""
    payload = {
        "query": query.strip(),
        "filters": filters.normalized(),
        "options": options.normalized(),
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()


class ResultCache:
    """Maps normalized requests to result sets."""

    def __init__(
        self,
        *,
        ttl: float | None = None,
        stale_grace: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize; unset arguments are read from configuration."""
        self.ttl = get_cache_ttl() if ttl is None else ttl
        self.stale_grace = get_cache_stale_grace() if stale_grace is None else stale_grace
        self.max_entries = get_cache_max_entries() if max_entries is None else max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._stale_hits = 0
        self._misses = 0
        self._evictions = 0

    def should_cache(
        self,
        query: str,
        filters: SearchFilters,
        options: SearchOptions,
        results: list[SearchResult] | None = None,
    ) -> bool:
        """Whether a request (and, when given, its results) is eligible for caching.

        Empty result sets are never cached so that newly indexed documents
        show up on the next search.
        """
        stripped = query.strip()
        if not stripped or len(stripped) > MAX_CACHEABLE_QUERY_CHARS:
            return False
        if filters.document_ids and len(filters.document_ids) > MAX_CACHEABLE_DOCUMENT_IDS:
            return False
        if options.top_k > MAX_CACHEABLE_TOP_K:
            return False
        if results is not None and not results:
            return False
        return True

    def get(
        self, query: str, filters: SearchFilters, options: SearchOptions
    ) -> list[SearchResult] | None:
        """Fresh cached results, or None."""
        key = cache_key(query, filters, options)
        entry = self._entries.get(key)
        if entry is None or self._age(entry) > self.ttl:
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return [result.model_copy(deep=True) for result in entry.results]

    def get_stale(
        self, query: str, filters: SearchFilters, options: SearchOptions
    ) -> list[SearchResult] | None:
        """Expired results still within the stale-grace window, for degraded paths."""
        entry = self._entries.get(cache_key(query, filters, options))
        if entry is None or self._age(entry) > self.ttl + self.stale_grace:
            return None
        self._stale_hits += 1
        logger.info("Serving stale cached results (age %.0fs)", self._age(entry))
        return [result.model_copy(deep=True) for result in entry.results]

    def set(
        self,
        query: str,
        filters: SearchFilters,
        options: SearchOptions,
        results: list[SearchResult],
    ) -> bool:
        """Store ``results`` when eligible. Returns True when stored."""
        if not self.should_cache(query, filters, options, results):
            return False
        key = cache_key(query, filters, options)
        self._entries[key] = CacheEntry(
            key=key,
            organization_id=filters.organization_id,
            results=tuple(result.model_copy(deep=True) for result in results),
            stored_at=self._clock(),
        )
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1
        return True

    def invalidate(self, organization_id: str | None = None) -> int:
        """Drop every entry, or only one organization's. Returns entries removed."""
        if organization_id is None:
            return self.clear()
        doomed = [k for k, e in self._entries.items() if e.organization_id == organization_id]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> int:
        """Drop every entry. Returns entries removed."""
        removed = len(self._entries)
        self._entries.clear()
        return removed

    def stats(self) -> dict[str, Any]:
        """Counters for observability."""
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl,
            "hits": self._hits,
            "stale_hits": self._stale_hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }

    def _age(self, entry: CacheEntry) -> float:
        return self._clock() - entry.stored_at
