"""Read-through cache with TTL support and explicit invalidation."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    """A cache entry with timestamp and TTL."""
    value: Any
    timestamp: float
    ttl: int  # seconds

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if this entry has expired."""
        return (now if now is not None else time.time()) - self.timestamp > self.ttl


class ReadThroughCache:
    """In-memory read-through cache keyed by string.

    Values are loaded on a miss via the loader passed to :meth:`get_or_load`.
    Writers never update cached values in place; they call :meth:`invalidate`
    and the next read refetches.
    """

    def __init__(self, ttl: int = 300, clock: Callable[[], float] = time.time):
        """Initialize cache.

        Args:
            ttl: Time-to-live in seconds (default 5 minutes)
            clock: Time source, injectable for tests
        """
        self.ttl = ttl
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Get a value from cache if present and not expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._cache[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store a value, replacing any previous entry for the key."""
        with self._lock:
            self._cache[key] = CacheEntry(
                value=value,
                timestamp=self._clock(),
                ttl=ttl or self.ttl,
            )

    def get_or_load(self, key: str, loader: Callable[[], T], ttl: Optional[int] = None) -> T:
        """Return the cached value for ``key``, loading it on a miss.

        The loader runs outside the lock; loader exceptions propagate and
        nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached

        logger.debug("Cache miss for %s", key)
        value = loader()
        if value is not None:
            self.set(key, value, ttl=ttl)
        return value

    def invalidate(self, key: str) -> bool:
        """Drop a single key. Returns True if an entry was removed."""
        with self._lock:
            removed = self._cache.pop(key, None) is not None
        if removed:
            logger.debug("Invalidated cache key %s", key)
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``. Returns count removed."""
        with self._lock:
            keys = [k for k in self._cache if k.startswith(prefix)]
            for key in keys:
                del self._cache[key]
        if keys:
            logger.debug("Invalidated %d cache keys under %s", len(keys), prefix)
        return len(keys)

    def clear(self) -> None:
        """Clear all entries from cache."""
        with self._lock:
            self._cache.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = self._clock()
        with self._lock:
            expired_keys = [k for k, v in self._cache.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
        if expired_keys:
            logger.debug("Cleaned up %d expired cache entries", len(expired_keys))
        return len(expired_keys)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        self.cleanup_expired()
        return len(self._cache)


__all__ = [
    "CacheEntry",
    "ReadThroughCache",
]
