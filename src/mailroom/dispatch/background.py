"""Deliver events on a worker thread so mutations never wait on a webhook."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Mapping
from typing import Any

from ..core.errors import DispatchError
from ..core.interfaces import EventDispatcher

LOGGER = logging.getLogger(__name__)

_Event = tuple[str, str, dict[str, Any]]


class BackgroundEventDispatcher:
    """Queue events for a single daemon worker that feeds ``inner``.

    ``notify`` returns as soon as the event is queued. Delivery failures are
    logged by the worker and never reach the caller. A full queue raises
    :class:`DispatchError`, which callers already treat as non-fatal.
    """

    def __init__(self, inner: EventDispatcher, *, max_pending: int = 1000) -> None:
        self._inner = inner
        self._queue: queue.Queue[_Event | None] = queue.Queue(maxsize=max_pending)
        self._closed = False
        self._worker = threading.Thread(
            target=self._drain, name="mailroom-dispatch", daemon=True
        )
        self._worker.start()

    @property
    def inner(self) -> EventDispatcher:
        return self._inner

    def notify(self, user_id: str, event: str, payload: Mapping[str, Any]) -> None:
        if self._closed:
            raise DispatchError(f"Dispatcher is closed; dropped {event}")
        try:
            self._queue.put_nowait((user_id, event, dict(payload)))
        except queue.Full:
            raise DispatchError(f"Dispatch queue is full; dropped {event}") from None

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every queued event was handed to ``inner``.

        Returns ``False`` if ``timeout`` elapsed first.
        """
        done = self._queue.all_tasks_done
        with done:
            return done.wait_for(lambda: not self._queue.unfinished_tasks, timeout)

    def close(self, timeout: float = 5.0) -> None:
        """Stop accepting events, drain the queue and close ``inner``."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            LOGGER.warning("Dispatch queue did not drain; pending events are lost")
        self._worker.join(timeout)
        close_inner = getattr(self._inner, "close", None)
        if callable(close_inner):
            close_inner()
        LOGGER.info("Event dispatcher stopped")

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                user_id, event, payload = item
                try:
                    self._inner.notify(user_id, event, payload)
                except Exception:  # pylint: disable=broad-except
                    LOGGER.warning(
                        "Event dispatch failed for %s (user %s)", event, user_id, exc_info=True
                    )
            finally:
                self._queue.task_done()


__all__ = ["BackgroundEventDispatcher"]
