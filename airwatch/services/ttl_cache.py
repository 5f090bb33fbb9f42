"""
ttl_cache.py — In-process key → value cache with a fixed time-to-live.

One instance per query shape (live readings vs facility lookups), created by
the app lifespan and injected into the aggregator that owns it. There is no
background sweeper: expiry is evaluated lazily on read, and an expired entry
is reported as a miss and dropped.

Thread-safe via a single lock. Every critical section is O(1) and does no
I/O, so unrelated keys never wait on each other for long.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    payload: T
    inserted_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.inserted_at

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl


class TtlCache(Generic[T]):
    """
    Fixed-TTL cache.

    Args:
        ttl_seconds: lifetime of every entry in this instance.
        clock:       monotonic time source; injectable for tests.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry[T]] = {}

    def get_entry(self, key: str) -> Optional[CacheEntry[T]]:
        """Return the live entry for key, or None if absent or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._entries[key]
                return None
            return entry

    def get(self, key: str) -> Optional[T]:
        entry = self.get_entry(key)
        return entry.payload if entry is not None else None

    def age_of(self, entry: CacheEntry[T]) -> float:
        """Seconds since entry was stored, on this cache's clock."""
        return entry.age(self._clock())

    def put(self, key: str, value: T) -> None:
        entry = CacheEntry(payload=value, inserted_at=self._clock(), ttl=self.ttl)
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
