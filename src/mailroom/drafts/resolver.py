"""Find the draft, if any, that continues a conversation."""

from __future__ import annotations

import logging

from ..core.interfaces import MailboxStore
from ..core.models import Draft

LOGGER = logging.getLogger(__name__)


class DraftThreadResolver:
    """Resolve which draft continues a thread.

    Nothing stops two composer sessions from replying into the same thread,
    so several drafts may match. The most recently edited one wins; the others
    are left in place. Results are read straight from the store because every
    autosave changes the answer.
    """

    def __init__(self, store: MailboxStore) -> None:
        self._store = store

    def find_draft_for_thread(self, user_id: str, thread_id: str) -> Draft | None:
        """Return the user's most recently edited draft replying into ``thread_id``."""
        message_ids = self._store.thread_message_ids(user_id, thread_id)
        if not message_ids:
            LOGGER.debug("Thread %s has no messages for user %s", thread_id, user_id)
            return None

        drafts = self._store.find_drafts_replying_to(user_id, message_ids)
        if not drafts:
            return None
        if len(drafts) > 1:
            LOGGER.info(
                "Thread %s has %d drafts for user %s; using %s",
                thread_id,
                len(drafts),
                user_id,
                drafts[0].id,
            )
        return drafts[0]


__all__ = ["DraftThreadResolver"]
