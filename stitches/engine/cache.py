"""
stitches.engine.cache — Bounded per-(guild, user) memory
=========================================================

Small thread-safe LRU map with time-based expiry, used for the message
cooldown timestamps and the admission filter's "previous message" memory.
Each owner holds its own instance; nothing here is module-global.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from threading import Lock
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedTTLCache(Generic[K, V]):
    """LRU cache capped at *max_entries*; entries older than *ttl_seconds*
    read as absent.

    ``clock`` returns seconds and defaults to :func:`time.monotonic`; tests
    inject a fake.
    """

    def __init__(
        self,
        max_entries: int = 10_000,
        ttl_seconds: float = 3600.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        # key → (stored_at, value), oldest first
        self._data: OrderedDict[K, tuple[float, V]] = OrderedDict()

    def get(self, key: K) -> V | None:
        now = self._clock()
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            stored_at, value = item
            if now - stored_at > self._ttl:
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return value

    def set(self, key: K, value: V) -> None:
        now = self._clock()
        with self._lock:
            self._data[key] = (now, value)
            self._data.move_to_end(key)
            while len(self._data) > self._max:
                self._data.popitem(last=False)

    def pop(self, key: K) -> V | None:
        with self._lock:
            item = self._data.pop(key, None)
        return item[1] if item else None

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry.  Returns the number removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (t, _) in self._data.items() if now - t > self._ttl]
            for k in stale:
                del self._data[k]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]
