"""UI-facing mailbox session: optimistic apply, request, reconcile."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from ..core.errors import MailroomError, NotFoundError
from ..core.models import BulkResult
from .api import MailboxApiClient
from .optimistic import OptimisticState, Ticket

LOGGER = logging.getLogger(__name__)

REMOVAL_ACTIONS = frozenset({"archive", "spam", "delete"})


class MailboxSession:
    """State behind one open folder view.

    Actions change the visible list synchronously and then await the server.
    Once :meth:`close` is called, responses still arriving are not applied,
    although the requests themselves complete server-side.
    """

    def __init__(
        self,
        api: MailboxApiClient,
        folder: str,
        *,
        on_error: Callable[[str], None] | None = None,
    ) -> None:
        self._api = api
        self.folder = folder
        self.state = OptimisticState()
        self.open_message_id: str | None = None
        self.notices: list[str] = []
        self.active = True
        self._messages: list[dict[str, Any]] = []
        self._total = 0
        self._on_error = on_error

    @property
    def messages(self) -> list[dict[str, Any]]:
        """The current list with optimistic state applied."""
        return self.state.overlay(self._messages)

    @property
    def total(self) -> int:
        return self._total

    async def refresh(self) -> None:
        """Fetch the authoritative list and reconcile optimistic state with it."""
        page = await self._api.list_messages(self.folder)
        if not self.active:
            return
        self._messages = list(page.get("messages", []))
        self._total = int(page.get("total", len(self._messages)))
        self.state.reconcile(self._messages)

    def open(self, message_id: str) -> None:
        self.open_message_id = message_id

    def close(self) -> None:
        self.active = False

    async def mark_read(self, message_id: str) -> None:
        """Show the message read at once, then persist it."""
        tickets = self.state.mark_read([message_id])
        try:
            await self._api.patch_message(message_id, read=True)
        except NotFoundError:
            self._settle(tickets)
        except MailroomError as exc:
            self._revert(tickets, f"Could not mark message as read: {exc}")
        else:
            self._settle(tickets)

    async def delete_forever(self, message_id: str) -> None:
        tickets = self._remove([message_id])
        try:
            await self._api.delete_message(message_id)
        except NotFoundError:
            self._settle(tickets)
        except MailroomError as exc:
            self._revert(tickets, f"Could not delete message: {exc}")
        else:
            self._settle(tickets)

    async def apply_bulk(self, action: str, message_ids: Sequence[str]) -> BulkResult | None:
        """Run a bulk action; returns the server's per-id result if one arrived."""
        if action in REMOVAL_ACTIONS:
            tickets = self._remove(message_ids)
        elif action == "read":
            tickets = self.state.mark_read(message_ids)
        else:
            tickets = []

        try:
            result = await self._api.bulk_update(action, message_ids, self.folder)
        except MailroomError as exc:
            self._revert(tickets, f"Could not {action} messages: {exc}")
            return None

        if not self.active:
            return result
        by_id = {ticket.message_id: ticket for ticket in tickets}
        rejected: list[Ticket] = []
        for failure in result.failed:
            ticket = by_id.pop(failure.id, None)
            if ticket is None:
                continue
            if failure.code == NotFoundError.code:
                self.state.confirm(ticket)
            else:
                rejected.append(ticket)
        for ticket in by_id.values():
            self.state.confirm(ticket)
        if rejected:
            requested = len(dict.fromkeys(message_ids))
            self._revert(rejected, f"{len(result.updated)} of {requested} updated")
        return result

    # Internal helpers --------------------------------------------------------
    def _remove(self, message_ids: Sequence[str]) -> list[Ticket]:
        tickets = self.state.mark_removed(message_ids)
        if self.open_message_id in message_ids:
            self.open_message_id = None
        return tickets

    def _settle(self, tickets: Sequence[Ticket]) -> None:
        if not self.active:
            return
        for ticket in tickets:
            self.state.confirm(ticket)

    def _revert(self, tickets: Sequence[Ticket], notice: str) -> None:
        if not self.active:
            LOGGER.debug("Dropping late failure for closed view: %s", notice)
            return
        reverted = [ticket for ticket in tickets if self.state.fail(ticket)]
        if not reverted and tickets:
            return
        LOGGER.info("Reverted optimistic state: %s", notice)
        self.notices.append(notice)
        if self._on_error is not None:
            self._on_error(notice)


__all__ = ["MailboxSession", "REMOVAL_ACTIONS"]
