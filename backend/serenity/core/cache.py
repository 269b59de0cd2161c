"""
In-memory TTL cache with an injectable clock.

`get` returns a (hit, value) pair so a cached None ("looked it up, nothing
there") is distinguishable from a miss. Storage is a bounded
cachetools.TTLCache, which sweeps expired entries on every write.
"""
from __future__ import annotations

import time
from threading import Lock
from typing import Any, Callable, Optional, Tuple

from cachetools import TTLCache as _BoundedTTLCache

Clock = Callable[[], float]

DEFAULT_MAX_ENTRIES = 10_000

_MISSING = object()


class TTLCache:
    """Thread-safe key/value cache where every entry expires after `ttl` seconds."""

    def __init__(
        self,
        ttl: float = 300.0,
        clock: Optional[Clock] = None,
        maxsize: int = DEFAULT_MAX_ENTRIES,
    ):
        self.ttl = ttl
        self._entries = _BoundedTTLCache(maxsize=maxsize, ttl=ttl, timer=clock or time.monotonic)
        self._lock = Lock()

    def get(self, key: str) -> Tuple[bool, Any]:
        with self._lock:
            value = self._entries.get(key, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup_expired(self) -> int:
        with self._lock:
            before = self._entries.currsize
            self._entries.expire()
            return before - self._entries.currsize

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key)[0]
