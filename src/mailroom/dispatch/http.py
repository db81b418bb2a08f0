"""Event dispatcher implementations."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..core.config import DispatchSettings
from ..core.datetime_utils import serialize_datetime, utc_now
from ..core.errors import DispatchError
from ..core.interfaces import EventDispatcher
from .background import BackgroundEventDispatcher

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class HttpEventDispatcher:
    """POST mutation events to a webhook endpoint.

    Signing and retries belong to the receiving service. A failed delivery
    raises :class:`DispatchError`; callers treat it as non-fatal.
    """

    settings: DispatchSettings
    client: httpx.Client | None = field(default=None)

    def notify(self, user_id: str, event: str, payload: Mapping[str, Any]) -> None:
        if not self.settings.webhook_url:
            raise DispatchError("No webhook URL configured")
        body = {
            "user": user_id,
            "event": event,
            "payload": dict(payload),
            "sent_at": serialize_datetime(utc_now()),
        }
        try:
            if self.client is not None:
                response = self.client.post(
                    self.settings.webhook_url,
                    json=body,
                    timeout=self.settings.timeout_seconds,
                )
            else:
                response = httpx.post(
                    self.settings.webhook_url,
                    json=body,
                    timeout=self.settings.timeout_seconds,
                )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DispatchError(f"Failed to dispatch {event}: {exc}") from exc
        LOGGER.debug("Dispatched %s for user %s", event, user_id)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()


class LoggingEventDispatcher(EventDispatcher):
    """Write events to the log only; used when no webhook is configured."""

    def notify(self, user_id: str, event: str, payload: Mapping[str, Any]) -> None:
        LOGGER.info(
            "Event %s for user %s: %s", event, user_id, json.dumps(dict(payload), default=str)
        )


def build_dispatcher(settings: DispatchSettings) -> EventDispatcher:
    """Return the dispatcher matching ``settings``.

    Webhook delivery runs on a background worker over one pooled client.
    """
    if settings.webhook_url:
        client = httpx.Client(timeout=settings.timeout_seconds)
        return BackgroundEventDispatcher(
            HttpEventDispatcher(settings, client=client), max_pending=settings.queue_size
        )
    return LoggingEventDispatcher()


__all__ = ["HttpEventDispatcher", "LoggingEventDispatcher", "build_dispatcher"]
