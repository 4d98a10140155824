"""
Best-effort in-memory TTL cache for strategy results.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar


T = TypeVar("T")


@dataclass
class CachedResult(Generic[T]):
    """Cached value with the time it was stored"""
    value: T
    cached_at: float

    def is_stale(self, ttl_seconds: float, now: float) -> bool:
        return now - self.cached_at >= ttl_seconds


class ResultCache(Generic[T]):
    """
    Keyed cache whose entries expire after ``ttl_seconds``.

    Expired entries are dropped when read, and swept in bulk once the cache
    grows past ``max_entries``.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time, max_entries: int = 512):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.max_entries = max_entries
        self._entries: Dict[str, CachedResult[T]] = {}

    def get(self, key: str, ttl_seconds: Optional[float] = None) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if entry.is_stale(ttl, self.clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: T) -> None:
        now = self.clock()
        self._entries[key] = CachedResult(value=value, cached_at=now)
        if len(self._entries) > self.max_entries:
            self._sweep(now)

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_stale(self.ttl_seconds, now)]
        for key in expired:
            del self._entries[key]

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
