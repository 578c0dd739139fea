"""Short-lived memoization of check-status queries.

The cache collapses bursts of identical status queries issued within one poll
tick. The TTL must stay shorter than the poller's initial interval: a cached
value never survives into the next tick.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL = 2.0
DEFAULT_MAX_ENTRIES = 100


def make_key(repository: str, ref: str, kind: str) -> str:
    """Build a cache key from repository, commit reference and query kind."""
    return f"{repository}@{ref}#{kind}"


@dataclass(frozen=True)
class CacheEntry:
    """Cached value with the time it was fetched."""

    key: str
    value: Any
    fetched_at: float


class CheckStatusCache:
    """TTL + LRU cache for remote status queries.

    Attributes:
        ttl: Seconds an entry stays live
        max_entries: LRU bound on stored entries
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl < 0:
            raise ValueError("Cache TTL must be non-negative")
        if max_entries < 1:
            raise ValueError("Cache must hold at least one entry")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str, fetcher: Callable[[], T]) -> T:
        """Return a live cached value or fetch, store and return a fresh one.

        Args:
            key: Cache key (see make_key)
            fetcher: Zero-argument callable performing the real query

        Returns:
            Cached or freshly fetched value

        Raises:
            Whatever the fetcher raises; failed fetches are not stored.
        """
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and now - entry.fetched_at < self.ttl:
            self._entries.move_to_end(key)
            self.hits += 1
            logger.debug(f"Cache hit: {key}")
            return entry.value

        self.misses += 1
        value = fetcher()
        self._store(CacheEntry(key=key, value=value, fetched_at=self._clock()))
        return value

    def _store(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry
        self._entries.move_to_end(entry.key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache evicted: {evicted}")

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

