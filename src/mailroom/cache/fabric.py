"""Two-tier cache fabric sitting between the mailbox store and readers.

Tier A (:class:`ListCache`) holds list views under coarse ``{user}:{query}``
keys. Tier B (:class:`TagCache`) holds single-resource views indexed by tags
such as ``thread:{id}`` and ``counts:{user}``. Every entry is a disposable
copy of store state with a short TTL; writers keep them fresh by invalidating
both tiers after each mutation.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Iterable
from threading import Lock
from typing import Any, TypeVar

from ..core.config import CacheSettings
from ..core.errors import CacheInvalidationError
from ..core.interfaces import CacheBackend
from .ttl import TtlCache

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def list_key(user_id: str, query: str) -> str:
    """Return the Tier A key for one of a user's list views."""
    return f"{user_id}:{query}"


def thread_tag(thread_id: str) -> str:
    """Return the Tier B tag for a thread's detail view."""
    return f"thread:{thread_id}"


def counts_tag(user_id: str) -> str:
    """Return the Tier B tag for a user's folder counts."""
    return f"counts:{user_id}"


class ListCache:
    """Tier A: per-user list views with an enumerable secondary key index.

    Invalidating a user consults the index directly instead of scanning the
    whole key space for a prefix.
    """

    def __init__(self, backend: CacheBackend, ttl_seconds: int) -> None:
        self._backend = backend
        self._ttl_seconds = ttl_seconds
        self._index: dict[str, set[str]] = {}
        self._lock = Lock()

    def get(self, user_id: str, query: str) -> Any | None:
        key = list_key(user_id, query)
        value = self._backend.get(key)
        if value is None:
            with self._lock:
                keys = self._index.get(user_id)
                if keys is not None:
                    keys.discard(key)
                    if not keys:
                        del self._index[user_id]
        return value

    def set(self, user_id: str, query: str, value: Any) -> None:
        key = list_key(user_id, query)
        self._backend.set(key, value, self._ttl_seconds)
        with self._lock:
            self._index.setdefault(user_id, set()).add(key)

    def keys_for(self, user_id: str) -> frozenset[str]:
        """Return the keys currently indexed for ``user_id``."""
        with self._lock:
            return frozenset(self._index.get(user_id, ()))

    def invalidate_user(self, user_id: str) -> int:
        """Drop every list view cached for ``user_id``."""
        with self._lock:
            keys = self._index.pop(user_id, set())
        if not keys:
            return 0
        try:
            removed = self._backend.delete_many(keys)
        except Exception:
            # Keep the keys enumerable so the next invalidation retries them.
            with self._lock:
                self._index.setdefault(user_id, set()).update(keys)
            raise
        LOGGER.info("Invalidated %d list cache entries for user %s", removed, user_id)
        return removed


class TagCache:
    """Tier B: resource entries that can be dropped by any of their tags.

    The tag index forgets keys the backend no longer holds: on a read miss,
    and in a sweep whenever the index outgrows ``max_indexed``. Invalidation
    counts are kept for the most recently invalidated ``max_indexed`` tags.
    """

    def __init__(
        self, backend: CacheBackend, ttl_seconds: int, *, max_indexed: int = 10_000
    ) -> None:
        self._backend = backend
        self._ttl_seconds = ttl_seconds
        self._max_indexed = max_indexed
        self._sweep_at = max_indexed
        self._tags: dict[str, set[str]] = {}
        self._key_tags: dict[str, set[str]] = {}
        self._lock = Lock()
        self.invalidations: Counter[str] = Counter()

    def get(self, key: str) -> Any | None:
        value = self._backend.get(key)
        if value is None:
            with self._lock:
                self._forget(key)
        return value

    def set(self, key: str, value: Any, tags: Iterable[str]) -> None:
        self._backend.set(key, value, self._ttl_seconds)
        with self._lock:
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)
                self._key_tags.setdefault(key, set()).add(tag)
            if len(self._key_tags) > self._sweep_at:
                self._sweep()
                self._sweep_at = max(self._max_indexed, 2 * len(self._key_tags))

    def keys_for(self, tag: str) -> frozenset[str]:
        """Return the entry keys currently carrying ``tag``."""
        with self._lock:
            return frozenset(self._tags.get(tag, ()))

    def indexed_keys(self) -> int:
        with self._lock:
            return len(self._key_tags)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Drop every entry carrying any of ``tags``."""
        tag_list = list(dict.fromkeys(tags))
        with self._lock:
            keys: set[str] = set()
            for tag in tag_list:
                keys.update(self._tags.get(tag, ()))
                self._count_invalidation(tag)
            dropped = {key: set(self._key_tags.get(key, ())) for key in keys}
            for key in keys:
                self._forget(key)
        try:
            removed = self._backend.delete_many(keys) if keys else 0
        except Exception:
            # Keep the keys enumerable so the next invalidation retries them.
            with self._lock:
                for key, key_tags in dropped.items():
                    for tag in key_tags:
                        self._tags.setdefault(tag, set()).add(key)
                        self._key_tags.setdefault(key, set()).add(tag)
            raise
        LOGGER.info(
            "Invalidated %d tagged cache entries for tags %s", removed, ", ".join(tag_list)
        )
        return removed

    def _forget(self, key: str) -> None:
        for tag in self._key_tags.pop(key, ()):
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]

    def _sweep(self) -> int:
        stale = [key for key in self._key_tags if self._backend.get(key) is None]
        for key in stale:
            self._forget(key)
        if stale:
            LOGGER.debug("Forgot %d evicted tag cache keys", len(stale))
        return len(stale)

    def _count_invalidation(self, tag: str) -> None:
        self.invalidations[tag] = self.invalidations.pop(tag, 0) + 1
        while len(self.invalidations) > self._max_indexed:
            del self.invalidations[next(iter(self.invalidations))]


class CacheFabric:
    """Read-through access to both tiers plus the invalidation contract."""

    def __init__(
        self,
        settings: CacheSettings | None = None,
        *,
        list_backend: CacheBackend | None = None,
        tag_backend: CacheBackend | None = None,
    ) -> None:
        settings = settings or CacheSettings()
        self.lists = ListCache(
            list_backend or TtlCache(max_entries=settings.max_entries), settings.list_ttl_seconds
        )
        self.tags = TagCache(
            tag_backend or TtlCache(max_entries=settings.max_entries),
            settings.tag_ttl_seconds,
            max_indexed=settings.max_entries,
        )
        self._generations: dict[str, int] = {}
        self._lock = Lock()

    def read(
        self,
        user_id: str,
        loader: Callable[[], T],
        *,
        tag: str | None = None,
        query: str | None = None,
    ) -> T:
        """Return a cached view, falling back to ``loader`` on a miss.

        Tier B is consulted first by resource tag, then Tier A by query key,
        then the store. Fills happen under the same lock that bumps a user's
        generation, so nothing read before an invalidation is written after it.
        """
        entry_key = _entry_key(tag, user_id) if tag else None
        generation = self._generation(user_id)

        if entry_key is not None:
            cached = self._safe_get(lambda: self.tags.get(entry_key))
            if cached is not None:
                return cached

        if query is not None:
            cached = self._safe_get(lambda: self.lists.get(user_id, query))
            if cached is not None:
                self._fill(user_id, generation, cached, tag=tag)
                return cached

        value = loader()
        self._fill(user_id, generation, value, tag=tag, query=query)
        return value

    def invalidate_user(self, user_id: str, tags: Iterable[str] = ()) -> None:
        """Invalidate all of a user's list views and the given resource tags.

        Both tiers are always attempted. Raises :class:`CacheInvalidationError`
        if either tier failed; the caller decides whether that is fatal.
        """
        tag_list = list(tags)
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1

        failures: list[tuple[str, Exception]] = []
        try:
            self.lists.invalidate_user(user_id)
        except Exception as exc:  # pylint: disable=broad-except
            failures.append(("list", exc))
        if tag_list:
            try:
                self.tags.invalidate_tags(tag_list)
            except Exception as exc:  # pylint: disable=broad-except
                failures.append(("tag", exc))

        if failures:
            tiers = ", ".join(name for name, _ in failures)
            raise CacheInvalidationError(
                f"Cache invalidation failed for user {user_id} ({tiers} tier)"
            ) from failures[0][1]

    def _fill(
        self,
        user_id: str,
        generation: int,
        value: Any,
        *,
        tag: str | None = None,
        query: str | None = None,
    ) -> None:
        with self._lock:
            if self._generations.get(user_id, 0) != generation:
                LOGGER.debug("Skipping cache fill for %s after concurrent invalidation", user_id)
                return
            if query is not None:
                self._safe_set(lambda: self.lists.set(user_id, query, value))
            if tag is not None:
                entry_key = _entry_key(tag, user_id)
                self._safe_set(lambda: self.tags.set(entry_key, value, (tag,)))

    def _generation(self, user_id: str) -> int:
        with self._lock:
            return self._generations.get(user_id, 0)

    @staticmethod
    def _safe_get(getter: Callable[[], Any]) -> Any | None:
        try:
            return getter()
        except Exception:  # pylint: disable=broad-except
            LOGGER.warning("Cache read failed; falling back to store", exc_info=True)
            return None

    @staticmethod
    def _safe_set(setter: Callable[[], None]) -> None:
        try:
            setter()
        except Exception:  # pylint: disable=broad-except
            LOGGER.warning("Cache fill failed", exc_info=True)


def _entry_key(tag: str, user_id: str) -> str:
    return f"{tag}@{user_id}"


__all__ = [
    "CacheFabric",
    "ListCache",
    "TagCache",
    "counts_tag",
    "list_key",
    "thread_tag",
]
