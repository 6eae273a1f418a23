"""
URL caching layer for the CDN URL generator.

Two interchangeable backends share the same get/set/clear/cleanup surface:
- UrlCache: in-process, bounded, FIFO eviction, TTL checked on read
- RedisUrlCache: shared across processes, expiry delegated to Redis
"""
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import redis

from storage_lifecycle.metrics import record_cache_lookup, url_cache_entries

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UrlCacheEntry:
    """
    Cached URL with its absolute expiry on the cache clock
    """
    url: str
    expires_at: float


class UrlCacheBackend(Protocol):
    """Storage backend for generated CDN URLs."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, url: str, ttl: float) -> None:
        ...

    def clear(self) -> None:
        ...

    def cleanup(self) -> int:
        ...


class UrlCache:
    """
    Bounded in-memory URL cache.

    Entries expire ``ttl`` seconds after insertion and are dropped lazily when
    read after expiry. Inserting past capacity evicts the oldest insertion
    first (FIFO, reads do not refresh position).
    """

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.monotonic):
        """
        Initialize URL cache.

        Args:
            max_size: Maximum number of entries
            clock: Monotonic time source in seconds (injectable for tests)
        """
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, UrlCacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        """
        Get URL from cache.

        Returns:
            Cached URL, or None when absent or expired
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() > entry.expires_at:
                del self._entries[key]
                url_cache_entries.set(len(self._entries))
                entry = None

        record_cache_lookup(hit=entry is not None)
        return entry.url if entry is not None else None

    def set(self, key: str, url: str, ttl: float) -> None:
        """
        Store URL in cache.

        Args:
            key: Cache key
            url: URL to cache
            ttl: Time to live in seconds
        """
        with self._lock:
            if key in self._entries:
                # Re-insertion counts as a fresh entry
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)

            self._entries[key] = UrlCacheEntry(url=url, expires_at=self._clock() + ttl)
            url_cache_entries.set(len(self._entries))

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries.clear()
        url_cache_entries.set(0)

    def cleanup(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
            for key in expired:
                del self._entries[key]
            url_cache_entries.set(len(self._entries))

        if expired:
            logger.debug(f"URL cache cleanup removed {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisUrlCache:
    """
    Redis-backed URL cache for deployments running several engine processes.

    Redis enforces the TTL, so ``cleanup`` has nothing to do. Redis failures are
    logged and treated as cache misses; URL generation never fails because of
    the cache.
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = "storage_lifecycle:cdn_url:"):
        self.redis = redis_client
        self.prefix = prefix

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            value = self.redis.get(self._make_key(key))
        except redis.RedisError as e:
            logger.warning(f"URL cache get error: {e}")
            value = None

        record_cache_lookup(hit=value is not None)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    def set(self, key: str, url: str, ttl: float) -> None:
        try:
            self.redis.setex(self._make_key(key), max(1, int(ttl)), url)
        except redis.RedisError as e:
            logger.warning(f"URL cache set error: {e}")

    def clear(self) -> None:
        try:
            keys = list(self.redis.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self.redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"URL cache clear error: {e}")

    def cleanup(self) -> int:
        return 0
