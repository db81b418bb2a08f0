"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol

from .models import Draft, Folder, FolderCount, Label, Message


class MailboxStore(Protocol):
    """Abstraction over the document store holding mailbox state.

    Every write is atomic per document. Writes raise
    :class:`~mailroom.core.errors.StoreWriteError` when the store fails and
    :class:`~mailroom.core.errors.NotFoundError` when the target is gone.
    """

    # Messages ----------------------------------------------------------------
    def persist_message(self, message: Message) -> None:
        """Insert or replace a message (receive/send path)."""
        raise NotImplementedError

    def fetch_message(self, message_id: str) -> Message | None:
        """Return a message by id regardless of owner."""
        raise NotImplementedError

    def update_message(
        self, message_id: str, user_id: str, changes: Mapping[str, Any]
    ) -> Message:
        """Apply ``changes`` in one atomic update and return the new state."""
        raise NotImplementedError

    def delete_message(self, message_id: str, user_id: str) -> bool:
        """Permanently remove a message. Returns ``True`` if a row was deleted."""
        raise NotImplementedError

    def list_messages(
        self,
        user_id: str,
        folder: str,
        *,
        offset: int,
        limit: int,
        unread_only: bool = False,
        starred_only: bool = False,
    ) -> tuple[list[Message], int]:
        """Return one page of a folder (newest first) and the folder's total."""
        raise NotImplementedError

    def list_starred(
        self, user_id: str, *, offset: int, limit: int, unread_only: bool = False
    ) -> tuple[list[Message], int]:
        """Return starred messages outside spam and trash, newest first."""
        raise NotImplementedError

    def list_thread(self, user_id: str, thread_id: str) -> list[Message]:
        """Return the thread's messages, oldest first."""
        raise NotImplementedError

    def thread_message_ids(self, user_id: str, thread_id: str) -> list[str]:
        """Return the RFC message-ids of every message in a thread."""
        raise NotImplementedError

    def count_by_folder(self, user_id: str) -> dict[str, FolderCount]:
        """Aggregate total/unread counts grouped by folder."""
        raise NotImplementedError

    def count_starred(self, user_id: str) -> FolderCount:
        """Aggregate counts over starred messages outside spam and trash."""
        raise NotImplementedError

    # Drafts ------------------------------------------------------------------
    def persist_draft(self, draft: Draft) -> Draft:
        """Insert or replace a draft."""
        raise NotImplementedError

    def fetch_draft(self, draft_id: str) -> Draft | None:
        """Return a draft by id regardless of owner."""
        raise NotImplementedError

    def delete_draft(self, draft_id: str, user_id: str) -> bool:
        """Remove a draft. Returns ``True`` if a row was deleted."""
        raise NotImplementedError

    def find_drafts_replying_to(
        self, user_id: str, message_ids: Sequence[str]
    ) -> list[Draft]:
        """Return drafts replying to any of ``message_ids``, newest edit first."""
        raise NotImplementedError

    def list_drafts(
        self, user_id: str, *, offset: int, limit: int
    ) -> tuple[list[Draft], int]:
        """Return one page of the user's drafts, most recently edited first."""
        raise NotImplementedError

    def count_drafts(self, user_id: str) -> int:
        """Return the number of drafts owned by ``user_id``."""
        raise NotImplementedError

    # Folders and labels ------------------------------------------------------
    def persist_folder(self, folder: Folder) -> Folder:
        """Insert or replace a custom folder."""
        raise NotImplementedError

    def fetch_folder(self, folder_id: str) -> Folder | None:
        """Return a custom folder by id."""
        raise NotImplementedError

    def list_folders(self, user_id: str) -> list[Folder]:
        """Return the user's custom folders."""
        raise NotImplementedError

    def delete_folder(self, folder_id: str, user_id: str, *, reassign_to: str) -> list[str]:
        """Delete a folder, moving its messages; returns affected thread ids."""
        raise NotImplementedError

    def persist_label(self, label: Label) -> Label:
        """Insert or replace a label."""
        raise NotImplementedError

    def fetch_label(self, label_id: str) -> Label | None:
        """Return a label by id."""
        raise NotImplementedError

    def list_labels(self, user_id: str) -> list[Label]:
        """Return the user's labels."""
        raise NotImplementedError

    def rename_label(self, label: Label, old_name: str) -> list[str]:
        """Store the renamed label and rewrite it on messages; returns thread ids."""
        raise NotImplementedError

    def delete_label(self, label_id: str, user_id: str) -> list[str]:
        """Delete a label and pull it from every message; returns thread ids."""
        raise NotImplementedError

    def close(self) -> None:
        """Release store resources."""
        raise NotImplementedError


class CacheBackend(Protocol):
    """Key/value storage with per-entry TTL used by both cache tiers."""

    def get(self, key: str) -> Any | None:
        """Return the cached value or ``None`` when missing or expired."""
        raise NotImplementedError

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        raise NotImplementedError

    def delete_many(self, keys: Iterable[str]) -> int:
        """Remove ``keys`` and return how many existed."""
        raise NotImplementedError


class EventDispatcher(Protocol):
    """Outbound notification sink. Delivery semantics belong to the dispatcher."""

    def notify(self, user_id: str, event: str, payload: Mapping[str, Any]) -> None:
        """Deliver a mutation event. Raises ``DispatchError`` on failure."""
        raise NotImplementedError


__all__ = ["CacheBackend", "EventDispatcher", "MailboxStore"]
