"""Bounded in-memory cache with per-entry time-to-live."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any


class TTLCache[V]:
    """
    Hot lookup tier.

    An entry is fresh while its age is strictly below ``ttl_seconds``. When
    the cache is full, inserting a new key evicts the oldest inserted entry.
    Expired entries are dropped when touched.

    Example:
        ```python
        cache: TTLCache[Issuer] = TTLCache(ttl_seconds=60, max_size=10_000)
        cache.set(issuer.did, issuer)
        cache.get(issuer.did)  # issuer, until 60s have passed
        ```
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> V | None:
        """Return the cached value if present and fresh."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            value, inserted_at = entry
            if self._clock() - inserted_at >= self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return value

    def set(self, key: str, value: V) -> None:
        """Insert or refresh an entry; a refresh counts as a new insertion."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                self._evictions += 1
            self._entries[key] = (value, self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, t) in self._entries.items() if now - t >= self.ttl_seconds]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
