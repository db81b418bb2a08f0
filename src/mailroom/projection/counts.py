"""Per-folder total and unread counts, served through the tag cache."""

from __future__ import annotations

import logging

from ..cache.fabric import CacheFabric, counts_tag
from ..core.interfaces import MailboxStore
from ..core.models import DRAFTS, STARRED_VIEW, SYSTEM_FOLDERS, FolderCount

LOGGER = logging.getLogger(__name__)


class FolderCountsProjection:
    """Read model of a user's folder counts.

    Always a fresh aggregate of the store on a cache miss. Counts live in
    Tier B only, under ``counts:{user}``; list keys are reserved for folder
    views. The coordinator invalidates that tag on every mutation that could
    change it.
    """

    def __init__(self, store: MailboxStore, cache: CacheFabric) -> None:
        self._store = store
        self._cache = cache

    def get_folder_counts(self, user_id: str) -> dict[str, FolderCount]:
        """Return ``{folder: FolderCount}`` for every folder of the user."""
        counts = self._cache.read(
            user_id, lambda: self._aggregate(user_id), tag=counts_tag(user_id)
        )
        return dict(counts)

    def _aggregate(self, user_id: str) -> dict[str, FolderCount]:
        LOGGER.debug("Aggregating folder counts for user %s", user_id)
        counts: dict[str, FolderCount] = {folder: FolderCount() for folder in SYSTEM_FOLDERS}
        for folder in self._store.list_folders(user_id):
            counts[folder.id] = FolderCount()
        counts.update(self._store.count_by_folder(user_id))
        counts[DRAFTS] = FolderCount(total=self._store.count_drafts(user_id), unread=0)
        counts[STARRED_VIEW] = self._store.count_starred(user_id)
        return counts


__all__ = ["FolderCountsProjection"]
