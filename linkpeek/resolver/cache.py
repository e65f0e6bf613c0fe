"""In-process LRU cache for resolved previews with separate success/failure TTLs."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from linkpeek.api.models import (
    DEFAULT_CACHE_MAX,
    DEFAULT_CACHE_TTL_MS,
    CacheOptions,
    CacheStats,
    Preview,
)

logger = logging.getLogger(__name__)

FAILURE_TTL_MS = 5 * 60 * 1000  # 5 minutes


@dataclass
class _CacheEntry:
    value: Preview
    expires_at: float  # clock milliseconds
    access_order: int


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class LRUCache:
    """Bounded map from URL to Preview with LRU eviction and per-entry TTL.

    Failures live for FAILURE_TTL_MS, successes for ``ttl_ms``. All access
    goes through one lock so promotion, insertion and eviction stay ordered
    when called from several threads.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_MAX,
        ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.success_ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._access_counter = 0
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_options(cls, options: CacheOptions, **kwargs) -> "LRUCache":
        return cls(max_size=options.max, ttl_ms=options.ttl_ms, **kwargs)

    def _next_order(self) -> int:
        self._access_counter += 1
        return self._access_counter

    def get(self, key: str) -> Preview | None:
        """Return the cached Preview and mark it most recently used, or None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() > entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None

            entry.access_order = self._next_order()
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Preview, is_failure: bool = False) -> None:
        ttl_ms = FAILURE_TTL_MS if is_failure else self.success_ttl_ms
        with self._lock:
            expires_at = self._clock() + ttl_ms

            # Overwrite in place, never evicts
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict()

            self._entries[key] = _CacheEntry(
                value=value, expires_at=expires_at, access_order=self._next_order()
            )

    def has(self, key: str) -> bool:
        """Like get() but leaves access order and counters alone."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return False
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._access_counter = 0

    def get_stats(self) -> CacheStats:
        """Purge expired entries, then report size and hit/miss counters."""
        with self._lock:
            self._prune_expired()
            return CacheStats(size=len(self._entries), hits=self._hits, misses=self._misses)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self) -> None:
        """Free one slot: the first expired entry found, else the least recently used."""
        now = self._clock()
        oldest_key: str | None = None
        oldest_order = None

        for key, entry in self._entries.items():
            if now > entry.expires_at:
                del self._entries[key]
                logger.debug(f"Evicted expired cache entry {key}")
                return
            if oldest_order is None or entry.access_order < oldest_order:
                oldest_order = entry.access_order
                oldest_key = key

        if oldest_key is not None:
            del self._entries[oldest_key]
            logger.debug(f"Evicted least recently used cache entry {oldest_key}")

    def _prune_expired(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now > e.expires_at]
        for key in expired:
            del self._entries[key]


class CacheRegistry:
    """Owns one LRUCache per (max, ttl_ms) configuration.

    Distinct configurations never share entries. The owner clears the
    registry at shutdown.
    """

    def __init__(self, clock: Callable[[], float] = _monotonic_ms) -> None:
        self._caches: dict[tuple[int, int], LRUCache] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, options: CacheOptions | None) -> LRUCache | None:
        """Return the cache for ``options``, creating it on first use; None if disabled."""
        if options is None or not options.enabled:
            return None
        with self._lock:
            cache = self._caches.get(options.fingerprint)
            if cache is None:
                cache = LRUCache.from_options(options, clock=self._clock)
                self._caches[options.fingerprint] = cache
                logger.info(
                    f"Created preview cache (max={options.max}, ttl_ms={options.ttl_ms})"
                )
            return cache

    def stats(self) -> dict[str, CacheStats]:
        with self._lock:
            caches = list(self._caches.items())
        return {f"max={m},ttl_ms={t}": c.get_stats() for (m, t), c in caches}

    def clear(self) -> None:
        """Drop every cache and its entries."""
        with self._lock:
            for cache in self._caches.values():
                cache.clear()
            self._caches.clear()
