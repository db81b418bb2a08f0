"""Bounded pool of store connections for the web app."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from queue import Empty, Queue
from threading import Lock
from types import TracebackType

from ..core.config import StorageSettings
from ..core.errors import StoreWriteError
from .sqlite import SqliteMailboxStore

LOGGER = logging.getLogger(__name__)


class ConnectionPool:
    """Hand out ``SqliteMailboxStore`` instances to request handlers.

    Connections are opened on demand up to ``pool_size`` and reused after
    that. A handler keeps its store for the whole request, so every write it
    makes goes through one connection. Exhaustion and use after shutdown raise
    :class:`StoreWriteError`, which the API reports as 503.
    """

    def __init__(self, settings: StorageSettings, *, pool_size: int | None = None) -> None:
        self._settings = settings
        self._capacity = pool_size or settings.pool_size
        self._idle: Queue[SqliteMailboxStore] = Queue()
        self._opened = 0
        self._lock = Lock()
        self._closed = False

    def __enter__(self) -> ConnectionPool:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def opened(self) -> int:
        """Connections currently open, idle or checked out."""
        return self._opened

    @property
    def idle(self) -> int:
        return self._idle.qsize()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @contextmanager
    def acquire(self, timeout: float = 10.0) -> Iterator[SqliteMailboxStore]:
        """Check a store out for the duration of the ``with`` block."""
        store = self._checkout(timeout)
        try:
            yield store
        finally:
            self._checkin(store)

    def close(self) -> None:
        """Close idle connections; checked-out ones close when returned."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        closed = 0
        while True:
            try:
                store = self._idle.get_nowait()
            except Empty:
                break
            self._discard(store)
            closed += 1
        LOGGER.info("Connection pool closed (%d idle connections)", closed)

    def _checkout(self, timeout: float) -> SqliteMailboxStore:
        if self._closed:
            raise StoreWriteError("Connection pool is closed")
        try:
            store = self._idle.get_nowait()
        except Empty:
            store = self._open_within_capacity()
            if store is None:
                try:
                    store = self._idle.get(timeout=timeout)
                except Empty as exc:
                    raise StoreWriteError(
                        f"No store connection free after {timeout:g}s"
                    ) from exc

        if store.ping():
            return store
        LOGGER.warning("Replacing unhealthy store connection")
        self._discard(store)
        replacement = self._open_within_capacity()
        if replacement is None:
            raise StoreWriteError("Could not replace unhealthy store connection")
        return replacement

    def _checkin(self, store: SqliteMailboxStore) -> None:
        if self._closed:
            self._discard(store)
        else:
            self._idle.put(store)

    def _open_within_capacity(self) -> SqliteMailboxStore | None:
        with self._lock:
            if self._opened >= self._capacity:
                return None
            self._opened += 1
        try:
            store = SqliteMailboxStore(self._settings)
        except Exception:
            with self._lock:
                self._opened -= 1
            raise
        LOGGER.debug("Opened store connection %d of %d", self._opened, self._capacity)
        return store

    def _discard(self, store: SqliteMailboxStore) -> None:
        store.close()
        with self._lock:
            self._opened -= 1


__all__ = ["ConnectionPool"]
