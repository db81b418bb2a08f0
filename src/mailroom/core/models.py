"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

INBOX = "inbox"
SENT = "sent"
DRAFTS = "drafts"
ARCHIVE = "archive"
SPAM = "spam"
TRASH = "trash"

SYSTEM_FOLDERS: tuple[str, ...] = (INBOX, SENT, DRAFTS, ARCHIVE, SPAM, TRASH)

# Virtual list view over starred messages; never a value of ``Message.folder``.
STARRED_VIEW = "starred"

BulkAction = Literal["read", "unread", "star", "unstar", "archive", "spam", "delete"]
BULK_ACTIONS: tuple[str, ...] = (
    "read",
    "unread",
    "star",
    "unstar",
    "archive",
    "spam",
    "delete",
)


@dataclass(frozen=True, slots=True)
class AuthUser:
    """Authenticated caller context issued by the identity provider."""

    id: str
    org_id: str


@dataclass(frozen=True, slots=True)
class AttachmentRef:
    """Reference to a binary attachment held in external storage."""

    id: str
    filename: str | None = None
    content_type: str | None = None
    size: int | None = None


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Message:
    """A stored message. Only the mutation coordinator changes its state."""

    id: str
    user_id: str
    org_id: str
    thread_id: str
    message_id: str
    folder: str
    read: bool
    starred: bool
    labels: tuple[str, ...]
    sender: str | None
    to: tuple[str, ...]
    cc: tuple[str, ...]
    bcc: tuple[str, ...]
    subject: str | None
    body_text: str | None
    body_html: str | None
    attachments: tuple[AttachmentRef, ...]
    created_at: datetime


@dataclass(slots=True)
class DraftContent:
    """Editable composer fields of a draft."""

    to: tuple[str, ...] = ()
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()
    subject: str = ""
    body_html: str = ""
    body_text: str | None = None
    in_reply_to_id: str | None = None
    attachments: tuple[AttachmentRef, ...] = ()


@dataclass(slots=True)
class Draft:
    """An in-progress composer session, autosaved on every edit."""

    id: str
    user_id: str
    content: DraftContent
    created_at: datetime
    updated_at: datetime

    @property
    def in_reply_to_id(self) -> str | None:
        """Message-id of the message this draft continues, if any."""
        return self.content.in_reply_to_id


@dataclass(slots=True)
class Folder:
    """User-defined folder."""

    id: str
    user_id: str
    org_id: str
    name: str
    color: str
    description: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Label:
    """User-defined label, independent of a message's folder."""

    id: str
    user_id: str
    org_id: str
    name: str
    color: str
    description: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class FolderCount:
    """Total and unread message counts for one folder."""

    total: int = 0
    unread: int = 0


@dataclass(slots=True)
class MessagePage:
    """One page of a folder's message list."""

    messages: list[Message]
    total: int
    page: int
    limit: int


@dataclass(slots=True)
class DraftPage:
    """One page of the drafts view."""

    drafts: list[Draft]
    total: int
    page: int
    limit: int


# Mutation commands -----------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SetRead:
    """Set the read flag."""

    value: bool


@dataclass(frozen=True, slots=True)
class SetStarred:
    """Set the starred flag."""

    value: bool


@dataclass(frozen=True, slots=True)
class MoveFolder:
    """Move a message to another folder."""

    to: str


MessageCommand = SetRead | SetStarred | MoveFolder


@dataclass(frozen=True, slots=True)
class BulkFailure:
    """A single id rejected by a bulk mutation."""

    id: str
    reason: str
    code: str


@dataclass(slots=True)
class BulkResult:
    """Per-id outcome of a bulk mutation. Partial success is normal."""

    updated: list[str] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)


__all__ = [
    "ARCHIVE",
    "AttachmentRef",
    "AuthUser",
    "BULK_ACTIONS",
    "BulkAction",
    "BulkFailure",
    "BulkResult",
    "DRAFTS",
    "Draft",
    "DraftContent",
    "DraftPage",
    "Folder",
    "FolderCount",
    "INBOX",
    "Label",
    "Message",
    "MessageCommand",
    "MessagePage",
    "MoveFolder",
    "SENT",
    "SPAM",
    "STARRED_VIEW",
    "SYSTEM_FOLDERS",
    "SetRead",
    "SetStarred",
    "TRASH",
]
