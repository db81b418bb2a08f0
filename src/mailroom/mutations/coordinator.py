"""The single write path for messages, drafts, folders and labels.

Every accepted mutation follows the same sequence: validate against the
stored state, write the store atomically, invalidate both cache tiers for
everything the write could have made stale, then notify the event
dispatcher. Cache and dispatch failures are logged and never fail a
mutation whose store write succeeded.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import fields, replace
from datetime import datetime
from typing import Any

from ..cache.fabric import CacheFabric, counts_tag, thread_tag
from ..core.datetime_utils import utc_now
from ..core.errors import (
    CacheInvalidationError,
    ConflictError,
    MailroomError,
    NotFoundError,
    ValidationError,
)
from ..core.interfaces import EventDispatcher, MailboxStore
from ..core.models import (
    INBOX,
    SYSTEM_FOLDERS,
    AuthUser,
    BulkFailure,
    BulkResult,
    Draft,
    DraftContent,
    Folder,
    Label,
    Message,
    MessageCommand,
)
from .transitions import (
    command_for_action,
    merge_commands,
    validate_delete_forever,
    validate_move,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_COLOR = "#3B82F6"
FOLDER_NAME_MAX = 50
LABEL_NAME_MAX = 30
DESCRIPTION_MAX = 200
_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
_DRAFT_FIELDS = frozenset(field.name for field in fields(DraftContent))


def _new_id() -> str:
    return uuid.uuid4().hex


class MutationCoordinator:
    """Owns every state change of mailbox documents."""

    def __init__(
        self,
        store: MailboxStore,
        cache: CacheFabric,
        dispatcher: EventDispatcher,
        *,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._store = store
        self._cache = cache
        self._dispatcher = dispatcher
        self._clock = clock
        self._id_factory = id_factory

    # Messages ----------------------------------------------------------------
    def apply_single(
        self, user: AuthUser, message_id: str, commands: Sequence[MessageCommand]
    ) -> Message:
        """Apply a restricted patch to one message and return its new state."""
        if not commands:
            raise ValidationError("Patch must change at least one of read, starred, folder")
        message = self._load_owned_message(user, message_id)
        updated, changes = self._transition(user, message, commands)
        if changes:
            self._after_message_write(user, message, updated, changes)
        return updated

    def apply_bulk(
        self,
        user: AuthUser,
        action: str,
        message_ids: Sequence[str],
        origin_folder: str | None = None,
    ) -> BulkResult:
        """Apply ``action`` to each id independently.

        One id's failure never blocks the others. Ids that changed state are
        invalidated together once the batch is done.
        """
        result = BulkResult()
        ordered_ids = list(dict.fromkeys(message_ids))
        try:
            command = command_for_action(action)
        except ValidationError as exc:
            result.failed.extend(
                BulkFailure(id=message_id, reason=str(exc), code=exc.code)
                for message_id in ordered_ids
            )
            return result

        changed: list[tuple[Message, Message, dict[str, Any]]] = []
        for message_id in ordered_ids:
            try:
                message = self._load_owned_message(user, message_id)
                updated, changes = self._transition(user, message, (command,))
            except MailroomError as exc:
                LOGGER.info(
                    "Bulk %s rejected message %s: %s", action, message_id, exc
                )
                result.failed.append(
                    BulkFailure(id=message_id, reason=str(exc), code=exc.code)
                )
                continue
            result.updated.append(message_id)
            if changes:
                changed.append((message, updated, changes))

        if changed:
            self._invalidate(
                user,
                [thread_tag(updated.thread_id) for _, updated, _ in changed],
                reason=f"bulk {action} from {origin_folder or 'unspecified'}",
            )
            for previous, updated, changes in changed:
                self._notify(
                    user,
                    "message.updated",
                    _message_event(previous, updated, changes, origin_folder=origin_folder),
                )

        LOGGER.info(
            "Bulk %s for user %s: %d of %d updated",
            action,
            user.id,
            len(result.updated),
            len(ordered_ids),
        )
        return result

    def delete_forever(self, user: AuthUser, message_id: str) -> None:
        """Permanently remove a message that sits in spam or trash."""
        message = self._load_owned_message(user, message_id)
        validate_delete_forever(message.folder)
        if not self._store.delete_message(message.id, user.id):
            raise NotFoundError(f"Message {message_id} not found")
        self._invalidate(
            user, [thread_tag(message.thread_id)], reason=f"delete {message.id}"
        )
        self._notify(
            user,
            "message.deleted",
            {"id": message.id, "thread_id": message.thread_id, "folder": message.folder},
        )

    # Drafts ------------------------------------------------------------------
    def create_draft(self, user: AuthUser, content: DraftContent) -> Draft:
        """Store a new draft for a composer's first edit."""
        now = self._clock()
        draft = Draft(
            id=self._id_factory(),
            user_id=user.id,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self._store.persist_draft(draft)
        self._invalidate(user, (), reason=f"create draft {draft.id}")
        self._notify(user, "draft.created", _draft_event(draft))
        return draft

    def update_draft(
        self, user: AuthUser, draft_id: str, changes: Mapping[str, Any]
    ) -> Draft:
        """Apply an autosave patch of composer fields to a draft."""
        unknown = set(changes) - _DRAFT_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported draft fields: {', '.join(sorted(unknown))}")
        existing = self._load_owned_draft(user, draft_id)
        updated = replace(
            existing,
            content=replace(existing.content, **changes),
            updated_at=max(self._clock(), existing.updated_at),
        )
        self._store.persist_draft(updated)
        self._invalidate(user, (), reason=f"update draft {draft_id}")
        self._notify(user, "draft.updated", _draft_event(updated))
        return updated

    def delete_draft(self, user: AuthUser, draft_id: str) -> None:
        """Remove a draft on send or explicit discard."""
        draft = self._load_owned_draft(user, draft_id)
        if not self._store.delete_draft(draft.id, user.id):
            raise NotFoundError(f"Draft {draft_id} not found")
        self._invalidate(user, (), reason=f"delete draft {draft_id}")
        self._notify(user, "draft.deleted", _draft_event(draft))

    # Folders -----------------------------------------------------------------
    def create_folder(
        self,
        user: AuthUser,
        name: str,
        *,
        color: str | None = None,
        description: str = "",
    ) -> Folder:
        """Create a custom folder."""
        clean_name = _clean_name(name, FOLDER_NAME_MAX, "Folder")
        if any(folder.name == clean_name for folder in self._store.list_folders(user.id)):
            raise ConflictError("Folder with this name already exists")
        now = self._clock()
        folder = Folder(
            id=self._id_factory(),
            user_id=user.id,
            org_id=user.org_id,
            name=clean_name,
            color=_clean_color(color),
            description=_clean_description(description),
            created_at=now,
            updated_at=now,
        )
        self._store.persist_folder(folder)
        # counts list every custom folder, so a new one must appear there
        self._invalidate(user, (), reason=f"create folder {folder.id}")
        return folder

    def update_folder(
        self,
        user: AuthUser,
        folder_id: str,
        *,
        name: str | None = None,
        color: str | None = None,
        description: str | None = None,
    ) -> Folder:
        """Rename or restyle a custom folder. Messages reference it by id."""
        folder = self._load_owned(self._store.fetch_folder(folder_id), user, "Folder", folder_id)
        changes: dict[str, Any] = {"updated_at": self._clock()}
        if name is not None:
            clean_name = _clean_name(name, FOLDER_NAME_MAX, "Folder")
            if clean_name != folder.name and any(
                other.name == clean_name for other in self._store.list_folders(user.id)
            ):
                raise ConflictError("Folder with this name already exists")
            changes["name"] = clean_name
        if color is not None:
            changes["color"] = _clean_color(color)
        if description is not None:
            changes["description"] = _clean_description(description)
        return self._store.persist_folder(replace(folder, **changes))

    def delete_folder(self, user: AuthUser, folder_id: str) -> None:
        """Delete a custom folder, moving its messages back to the inbox."""
        folder = self._load_owned(self._store.fetch_folder(folder_id), user, "Folder", folder_id)
        threads = self._store.delete_folder(folder.id, user.id, reassign_to=INBOX)
        self._invalidate(
            user,
            [thread_tag(thread_id) for thread_id in threads],
            reason=f"delete folder {folder.id}",
        )
        self._notify(
            user,
            "folder.deleted",
            {"id": folder.id, "name": folder.name, "reassigned_threads": len(threads)},
        )

    # Labels ------------------------------------------------------------------
    def create_label(
        self,
        user: AuthUser,
        name: str,
        *,
        color: str | None = None,
        description: str = "",
    ) -> Label:
        """Create a label."""
        clean_name = _clean_name(name, LABEL_NAME_MAX, "Label")
        if any(label.name == clean_name for label in self._store.list_labels(user.id)):
            raise ConflictError("Label with this name already exists")
        now = self._clock()
        label = Label(
            id=self._id_factory(),
            user_id=user.id,
            org_id=user.org_id,
            name=clean_name,
            color=_clean_color(color),
            description=_clean_description(description),
            created_at=now,
            updated_at=now,
        )
        return self._store.persist_label(label)

    def update_label(
        self,
        user: AuthUser,
        label_id: str,
        *,
        name: str | None = None,
        color: str | None = None,
        description: str | None = None,
    ) -> Label:
        """Update a label; a rename is rewritten on every labelled message."""
        label = self._load_owned(self._store.fetch_label(label_id), user, "Label", label_id)
        changes: dict[str, Any] = {"updated_at": self._clock()}
        if name is not None:
            clean_name = _clean_name(name, LABEL_NAME_MAX, "Label")
            if clean_name != label.name and any(
                other.name == clean_name for other in self._store.list_labels(user.id)
            ):
                raise ConflictError("Label with this name already exists")
            changes["name"] = clean_name
        if color is not None:
            changes["color"] = _clean_color(color)
        if description is not None:
            changes["description"] = _clean_description(description)

        updated = replace(label, **changes)
        threads = self._store.rename_label(updated, label.name)
        if threads:
            self._invalidate(
                user,
                [thread_tag(thread_id) for thread_id in threads],
                reason=f"rename label {label.id}",
            )
        return updated

    def delete_label(self, user: AuthUser, label_id: str) -> None:
        """Delete a label and pull it out of every message's label set."""
        label = self._load_owned(self._store.fetch_label(label_id), user, "Label", label_id)
        threads = self._store.delete_label(label.id, user.id)
        self._invalidate(
            user,
            [thread_tag(thread_id) for thread_id in threads],
            reason=f"delete label {label.id}",
        )
        self._notify(
            user,
            "label.deleted",
            {"id": label.id, "name": label.name, "affected_threads": len(threads)},
        )

    # Internal helpers --------------------------------------------------------
    def _load_owned_message(self, user: AuthUser, message_id: str) -> Message:
        return self._load_owned(
            self._store.fetch_message(message_id), user, "Message", message_id
        )

    def _load_owned_draft(self, user: AuthUser, draft_id: str) -> Draft:
        return self._load_owned(self._store.fetch_draft(draft_id), user, "Draft", draft_id)

    @staticmethod
    def _load_owned(resource: Any, user: AuthUser, kind: str, resource_id: str) -> Any:
        if resource is None:
            raise NotFoundError(f"{kind} {resource_id} not found")
        if resource.user_id != user.id:
            raise ValidationError(f"{kind} {resource_id} does not belong to the caller")
        return resource

    def _custom_folder_ids(self, user: AuthUser) -> set[str]:
        return {folder.id for folder in self._store.list_folders(user.id)}

    def _transition(
        self, user: AuthUser, message: Message, commands: Sequence[MessageCommand]
    ) -> tuple[Message, dict[str, Any]]:
        """Validate and write one atomic state change; no-ops skip the write."""
        requested = merge_commands(commands)
        current = {"read": message.read, "starred": message.starred, "folder": message.folder}
        destination = requested.get("folder")
        if destination is not None:
            custom_folders: set[str] = set()
            if destination not in SYSTEM_FOLDERS:
                custom_folders = self._custom_folder_ids(user)
            validate_move(message.folder, str(destination), custom_folders)

        changes = {key: value for key, value in requested.items() if current[key] != value}
        if not changes:
            LOGGER.debug("Message %s already in requested state", message.id)
            return message, {}
        updated = self._store.update_message(message.id, user.id, changes)
        return updated, changes

    def _after_message_write(
        self,
        user: AuthUser,
        previous: Message,
        updated: Message,
        changes: Mapping[str, Any],
    ) -> None:
        self._invalidate(
            user,
            [thread_tag(updated.thread_id)],
            reason=f"update {updated.id} ({previous.folder} -> {updated.folder})",
        )
        self._notify(user, "message.updated", _message_event(previous, updated, changes))

    def _invalidate(self, user: AuthUser, tags: Iterable[str], *, reason: str) -> None:
        """Invalidate every list view of the user, their counts, and ``tags``."""
        all_tags = [counts_tag(user.id), *dict.fromkeys(tags)]
        try:
            self._cache.invalidate_user(user.id, all_tags)
        except CacheInvalidationError:
            LOGGER.error(
                "Cache invalidation failed after %s for user %s; staleness bounded by TTL",
                reason,
                user.id,
                exc_info=True,
            )

    def _notify(self, user: AuthUser, event: str, payload: Mapping[str, Any]) -> None:
        try:
            self._dispatcher.notify(user.id, event, payload)
        except Exception:  # pylint: disable=broad-except
            LOGGER.warning(
                "Event dispatch failed for %s (user %s)", event, user.id, exc_info=True
            )


def _message_event(
    previous: Message,
    updated: Message,
    changes: Mapping[str, Any],
    *,
    origin_folder: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": updated.id,
        "thread_id": updated.thread_id,
        "changes": dict(changes),
        "previous_folder": previous.folder,
        "folder": updated.folder,
    }
    if origin_folder is not None:
        payload["origin_folder"] = origin_folder
    return payload


def _draft_event(draft: Draft) -> dict[str, Any]:
    return {
        "id": draft.id,
        "in_reply_to_id": draft.in_reply_to_id,
        "updated_at": draft.updated_at.isoformat(),
    }


def _clean_name(name: str, limit: int, kind: str) -> str:
    clean = name.strip()
    if not clean:
        raise ValidationError(f"{kind} name is required")
    if len(clean) > limit:
        raise ValidationError(f"{kind} name must be {limit} characters or less")
    if clean in SYSTEM_FOLDERS:
        raise ValidationError(f"'{clean}' is a reserved name")
    return clean


def _clean_color(color: str | None) -> str:
    if color is None:
        return DEFAULT_COLOR
    if not _COLOR_PATTERN.match(color):
        raise ValidationError("Color must be a hex value like #3B82F6")
    return color.upper()


def _clean_description(description: str) -> str:
    clean = description.strip()
    if len(clean) > DESCRIPTION_MAX:
        raise ValidationError(f"Description must be {DESCRIPTION_MAX} characters or less")
    return clean


__all__ = ["MutationCoordinator"]
