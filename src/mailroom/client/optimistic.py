"""Per-message optimistic view state layered over authoritative lists.

Each message id the user has acted on is in one of three states.
``CONFIRMED`` means the authoritative list is shown as is and the id has no
entry at all. ``OPTIMISTIC_READ`` shows the message read before the server
confirms. ``OPTIMISTIC_PENDING_REMOVAL`` hides it from the current folder
after an archive, spam, trash or permanent delete.

Every action issues a :class:`Ticket` carrying a per-id sequence number and
the state it replaced. Only the latest ticket for an id may revert it, so a
slow response to an older action never undoes a newer one. Entries are
presentational only: :meth:`OptimisticState.reconcile` drops them once a
fresh authoritative list makes them redundant.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

LOGGER = logging.getLogger(__name__)


class ViewState(str, Enum):
    """Presentation state of one message id."""

    CONFIRMED = "confirmed"
    OPTIMISTIC_READ = "optimistic_read"
    OPTIMISTIC_PENDING_REMOVAL = "optimistic_pending_removal"


@dataclass(frozen=True, slots=True)
class Ticket:
    """Handle for one optimistic transition awaiting its server response."""

    message_id: str
    sequence: int
    previous: ViewState
    state: ViewState


@dataclass(slots=True)
class _Entry:
    state: ViewState
    latest: int = 0
    in_flight: int = 0
    stale_refreshes: int = 0


# (current state, action) -> next state
_TRANSITIONS: Mapping[tuple[ViewState, str], ViewState] = {
    (ViewState.CONFIRMED, "read"): ViewState.OPTIMISTIC_READ,
    (ViewState.OPTIMISTIC_READ, "read"): ViewState.OPTIMISTIC_READ,
    (ViewState.OPTIMISTIC_PENDING_REMOVAL, "read"): ViewState.OPTIMISTIC_PENDING_REMOVAL,
    (ViewState.CONFIRMED, "remove"): ViewState.OPTIMISTIC_PENDING_REMOVAL,
    (ViewState.OPTIMISTIC_READ, "remove"): ViewState.OPTIMISTIC_PENDING_REMOVAL,
    (ViewState.OPTIMISTIC_PENDING_REMOVAL, "remove"): ViewState.OPTIMISTIC_PENDING_REMOVAL,
}


class OptimisticState:
    """Optimistic overlay for one mailbox view."""

    def __init__(self, *, max_stale_refreshes: int = 3) -> None:
        self._entries: dict[str, _Entry] = {}
        self._max_stale_refreshes = max_stale_refreshes
        self._sequence = itertools.count(1)

    # Queries -----------------------------------------------------------------
    def state_of(self, message_id: str) -> ViewState:
        entry = self._entries.get(message_id)
        return entry.state if entry is not None else ViewState.CONFIRMED

    @property
    def optimistically_read(self) -> frozenset[str]:
        return frozenset(
            message_id
            for message_id, entry in self._entries.items()
            if entry.state is ViewState.OPTIMISTIC_READ
        )

    @property
    def pending_removal(self) -> frozenset[str]:
        return frozenset(
            message_id
            for message_id, entry in self._entries.items()
            if entry.state is ViewState.OPTIMISTIC_PENDING_REMOVAL
        )

    def __len__(self) -> int:
        return len(self._entries)

    def overlay(self, messages: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Return ``messages`` as the user should see them right now."""
        visible: list[dict[str, Any]] = []
        for message in messages:
            state = self.state_of(message["id"])
            if state is ViewState.OPTIMISTIC_PENDING_REMOVAL:
                continue
            shown = dict(message)
            if state is ViewState.OPTIMISTIC_READ:
                shown["read"] = True
            visible.append(shown)
        return visible

    # Transitions -------------------------------------------------------------
    def mark_read(self, message_ids: Sequence[str]) -> list[Ticket]:
        """Show ``message_ids`` as read until the server answers."""
        return [self._issue(message_id, "read") for message_id in dict.fromkeys(message_ids)]

    def mark_removed(self, message_ids: Sequence[str]) -> list[Ticket]:
        """Hide ``message_ids`` from the current folder until the server answers."""
        return [
            self._issue(message_id, "remove") for message_id in dict.fromkeys(message_ids)
        ]

    def confirm(self, ticket: Ticket) -> None:
        """Record a successful (or already settled) response.

        The optimistic state stays until a refresh supersedes it.
        """
        entry = self._entries.get(ticket.message_id)
        if entry is not None and entry.in_flight:
            entry.in_flight -= 1

    def fail(self, ticket: Ticket) -> bool:
        """Record a failed response; returns ``True`` if the view was reverted."""
        entry = self._entries.get(ticket.message_id)
        if entry is None:
            return False
        if entry.in_flight:
            entry.in_flight -= 1
        if ticket.sequence != entry.latest:
            LOGGER.debug(
                "Ignoring stale failure for %s (ticket %d, latest %d)",
                ticket.message_id,
                ticket.sequence,
                entry.latest,
            )
            return False
        entry.state = ticket.previous
        if entry.state is ViewState.CONFIRMED and not entry.in_flight:
            del self._entries[ticket.message_id]
        LOGGER.debug("Reverted %s to %s", ticket.message_id, ticket.previous.value)
        return True

    def reconcile(self, messages: Iterable[Mapping[str, Any]]) -> None:
        """Drop entries made redundant by a fresh authoritative list.

        A read is redundant once the list shows the message read, and a
        pending removal once the list no longer includes the id. A settled
        entry the list still contradicts may come from a list fetched before
        the mutation landed, so it is kept for up to ``max_stale_refreshes``
        refreshes before the list wins.
        """
        server_read = {message["id"]: bool(message.get("read")) for message in messages}
        for message_id in list(self._entries):
            entry = self._entries[message_id]
            if entry.state is ViewState.OPTIMISTIC_READ:
                redundant = server_read.get(message_id, not entry.in_flight)
            elif entry.state is ViewState.OPTIMISTIC_PENDING_REMOVAL:
                redundant = not entry.in_flight and message_id not in server_read
            else:
                redundant = not entry.in_flight
            if redundant:
                del self._entries[message_id]
            elif not entry.in_flight:
                entry.stale_refreshes += 1
                if entry.stale_refreshes > self._max_stale_refreshes:
                    LOGGER.debug(
                        "Dropping %s for %s after %d contradicting refreshes",
                        entry.state.value,
                        message_id,
                        self._max_stale_refreshes,
                    )
                    del self._entries[message_id]

    def _issue(self, message_id: str, action: str) -> Ticket:
        entry = self._entries.setdefault(message_id, _Entry(state=ViewState.CONFIRMED))
        previous = entry.state
        ticket = Ticket(
            message_id=message_id,
            sequence=next(self._sequence),
            previous=previous,
            state=_TRANSITIONS[(previous, action)],
        )
        entry.state = ticket.state
        entry.latest = ticket.sequence
        entry.in_flight += 1
        entry.stale_refreshes = 0
        return ticket


__all__ = ["OptimisticState", "Ticket", "ViewState"]
