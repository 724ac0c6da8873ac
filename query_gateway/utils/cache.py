"""Bounded LRU cache with per-entry time-to-live."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    key: str
    value: V
    inserted_at: float


class TTLCache(Generic[V]):
    """Thread-safe LRU cache where entries also expire ``ttl`` seconds after insertion.

    Eviction happens on whichever comes first: capacity (least recently used
    goes) or age. Expired entries are dropped lazily on access and eagerly on
    insert. ``clock`` must be monotonic; tests pass a fake one.
    """

    def __init__(
        self,
        capacity: int = 500,
        ttl: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _expired(self, entry: CacheEntry[V], now: float) -> bool:
        return now - entry.inserted_at >= self.ttl

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            self._purge_expired(now)
            while len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
            self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _purge_expired(self, now: float) -> None:
        stale = [k for k, e in self._entries.items() if self._expired(e, now)]
        for k in stale:
            del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._expired(entry, self._clock())

    def info(self) -> Dict[str, float]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "ttl": self.ttl,
                "hits": self.hits,
                "misses": self.misses,
            }
