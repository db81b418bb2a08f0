"""Folder transition allow-list and bulk action mapping."""

from __future__ import annotations

from collections.abc import Container, Sequence

from ..core.errors import ValidationError
from ..core.models import (
    ARCHIVE,
    DRAFTS,
    INBOX,
    SENT,
    SPAM,
    SYSTEM_FOLDERS,
    TRASH,
    MessageCommand,
    MoveFolder,
    SetRead,
    SetStarred,
)

# Sentinel standing for "any user-defined folder" in the allow-list below.
CUSTOM = "*custom*"

# destination -> folders a message may leave to reach it
_ALLOWED_SOURCES: dict[str, frozenset[str]] = {
    TRASH: frozenset({INBOX, SENT, DRAFTS, ARCHIVE, SPAM, CUSTOM}),
    SPAM: frozenset({INBOX, ARCHIVE, CUSTOM}),
    INBOX: frozenset({SPAM, TRASH, ARCHIVE, CUSTOM}),
    ARCHIVE: frozenset({INBOX, SENT, CUSTOM}),
    CUSTOM: frozenset({INBOX, ARCHIVE, CUSTOM}),
}

# Folders from which a message may be removed permanently.
DELETE_FOREVER_FOLDERS: frozenset[str] = frozenset({SPAM, TRASH})

_BULK_COMMANDS: dict[str, MessageCommand] = {
    "read": SetRead(True),
    "unread": SetRead(False),
    "star": SetStarred(True),
    "unstar": SetStarred(False),
    "archive": MoveFolder(ARCHIVE),
    "spam": MoveFolder(SPAM),
    "delete": MoveFolder(TRASH),
}


def command_for_action(action: str) -> MessageCommand:
    """Return the mutation command a bulk ``action`` stands for."""
    try:
        return _BULK_COMMANDS[action]
    except KeyError:
        raise ValidationError(f"Unknown action '{action}'") from None


def _folder_class(folder: str) -> str:
    return folder if folder in SYSTEM_FOLDERS else CUSTOM


def validate_move(
    source: str, destination: str, custom_folders: Container[str] = ()
) -> None:
    """Raise :class:`ValidationError` unless ``source`` -> ``destination`` is allowed.

    ``custom_folders`` holds the ids of the caller's existing custom folders;
    a destination outside the system folders must be one of them.
    """
    if source == destination:
        raise ValidationError(f"Message is already in {destination}")
    if destination in (SENT, DRAFTS):
        raise ValidationError(f"Messages cannot be moved to {destination}")
    if destination not in SYSTEM_FOLDERS and destination not in custom_folders:
        raise ValidationError(f"Unknown folder '{destination}'")

    allowed = _ALLOWED_SOURCES[_folder_class(destination)]
    if _folder_class(source) not in allowed:
        raise ValidationError(f"Cannot move a message from {source} to {destination}")


def validate_delete_forever(folder: str) -> None:
    """Permanent deletion is only valid from spam or trash."""
    if folder not in DELETE_FOREVER_FOLDERS:
        raise ValidationError(
            f"Messages can only be deleted forever from spam or trash, not {folder}"
        )


def merge_commands(commands: Sequence[MessageCommand]) -> dict[str, object]:
    """Fold commands into one field->value change set, rejecting conflicts."""
    changes: dict[str, object] = {}
    for command in commands:
        if isinstance(command, SetRead):
            field, value = "read", command.value
        elif isinstance(command, SetStarred):
            field, value = "starred", command.value
        elif isinstance(command, MoveFolder):
            field, value = "folder", command.to
        else:
            raise ValidationError(f"Unsupported command {command!r}")
        if field in changes and changes[field] != value:
            raise ValidationError(f"Conflicting values for '{field}'")
        changes[field] = value
    return changes


__all__ = [
    "CUSTOM",
    "DELETE_FOREVER_FOLDERS",
    "command_for_action",
    "merge_commands",
    "validate_delete_forever",
    "validate_move",
]
