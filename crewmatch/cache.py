"""
In-process TTL cache for distance/ETA lookups.

Entries are idempotent within their time bucket, so readers never need to
coordinate for correctness. The single-flight guard only keeps concurrent
misses on the same key from all calling the routing provider.
"""

import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from .logger import get_logger

logger = get_logger()


class TTLCache:
    """Key -> value store with per-entry expiry. Safe to drop at any time."""

    def __init__(self, ttl_seconds: float = 900.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._next_purge = clock() + ttl_seconds

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None when missing or expired."""
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value; sweeps expired entries at most once per TTL period."""
        now = self._clock()
        removed = 0
        with self._lock:
            self._data[key] = (now + self.ttl_seconds, value)
            if now >= self._next_purge:
                removed = self._purge_locked(now)
        if removed:
            logger.debug("Purged expired distance cache entries", count=removed)

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        with self._lock:
            removed = self._purge_locked(self._clock())
        if removed:
            logger.debug("Purged expired distance cache entries", count=removed)
        return removed

    def _purge_locked(self, now: float) -> int:
        # Entries from past time buckets are only ever removed here
        stale = [k for k, (expires_at, _) in self._data.items() if expires_at <= now]
        for k in stale:
            del self._data[k]
        self._next_purge = now + self.ttl_seconds
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class SingleFlight:
    """Collapse concurrent calls for the same key into one execution."""

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[Hashable, "_Call"] = {}

    def do(self, key: Hashable, fn: Callable[[], Any]) -> Any:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
            return call.result
        except Exception as e:
            call.error = e
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()


class _Call:
    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.error: Optional[Exception] = None
