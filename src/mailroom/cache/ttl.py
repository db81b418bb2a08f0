"""In-process TTL key/value store backing both cache tiers."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from threading import Lock
from typing import Any, NamedTuple

LOGGER = logging.getLogger(__name__)


class _Slot(NamedTuple):
    value: Any
    expires_at: float


class TtlCache:
    """Bounded, thread-safe cache whose entries expire after a TTL.

    Entries are kept in insertion order; when ``max_entries`` is reached the
    oldest write is evicted. Expired entries are dropped lazily on read or in
    bulk by :meth:`cleanup_expired`.
    """

    def __init__(
        self,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._slots: OrderedDict[str, _Slot] = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            slot = self._slots.get(key)
            if slot is None:
                LOGGER.debug("Cache miss: %s", key)
                return None
            if self._clock() >= slot.expires_at:
                del self._slots[key]
                LOGGER.debug("Cache entry expired: %s", key)
                return None
        LOGGER.debug("Cache hit: %s", key)
        return slot.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._slots.pop(key, None)
            self._slots[key] = _Slot(value, self._clock() + ttl_seconds)
            while len(self._slots) > self._max_entries:
                evicted, _ = self._slots.popitem(last=False)
                LOGGER.debug("Evicted %s to stay within %d entries", evicted, self._max_entries)
        LOGGER.debug("Cached %s for %ds", key, ttl_seconds)

    def delete_many(self, keys: Iterable[str]) -> int:
        """Remove ``keys``; returns how many were present."""
        with self._lock:
            return sum(1 for key in keys if self._slots.pop(key, None) is not None)

    def cleanup_expired(self) -> int:
        """Drop every expired entry and return how many went."""
        with self._lock:
            now = self._clock()
            expired = [key for key, slot in self._slots.items() if now >= slot.expires_at]
            for key in expired:
                del self._slots[key]
        if expired:
            LOGGER.debug("Dropped %d expired cache entries", len(expired))
        return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._slots)
            self._slots.clear()
        return count

    def size(self) -> int:
        with self._lock:
            return len(self._slots)


__all__ = ["TtlCache"]
