"""Cached list and thread views over the mailbox store."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from ..cache.fabric import CacheFabric, thread_tag
from ..core.config import ApiSettings
from ..core.errors import ValidationError
from ..core.interfaces import MailboxStore
from ..core.models import (
    DRAFTS,
    STARRED_VIEW,
    SYSTEM_FOLDERS,
    DraftPage,
    Message,
    MessagePage,
)

LOGGER = logging.getLogger(__name__)


def list_query(
    folder: str,
    *,
    page: int,
    limit: int,
    default_limit: int,
    unread_only: bool = False,
    starred_only: bool = False,
) -> str:
    """Return the canonical list-cache query for a folder view.

    The first page with default options is addressed by the bare folder name;
    anything else appends its parameters in sorted order.
    """
    params: dict[str, object] = {}
    if page != 1:
        params["page"] = page
    if limit != default_limit:
        params["limit"] = limit
    if unread_only:
        params["unread"] = 1
    if starred_only:
        params["starred"] = 1
    if not params:
        return folder
    return f"{folder}?{urlencode(sorted(params.items()))}"


class MailboxViews:
    """Read paths for message lists, the drafts view and thread detail."""

    def __init__(
        self,
        store: MailboxStore,
        cache: CacheFabric,
        settings: ApiSettings | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings or ApiSettings()

    def list_messages(
        self,
        user_id: str,
        folder: str,
        *,
        page: int = 1,
        limit: int | None = None,
        unread_only: bool = False,
        starred_only: bool = False,
    ) -> MessagePage:
        """Return one page of a folder, or of the virtual starred view."""
        self._check_folder(user_id, folder)
        page, limit = self._page_bounds(page, limit)
        query = list_query(
            folder,
            page=page,
            limit=limit,
            default_limit=self._settings.default_page_size,
            unread_only=unread_only,
            starred_only=starred_only,
        )
        offset = (page - 1) * limit

        def load() -> MessagePage:
            if folder == STARRED_VIEW:
                messages, total = self._store.list_starred(
                    user_id, offset=offset, limit=limit, unread_only=unread_only
                )
            else:
                messages, total = self._store.list_messages(
                    user_id,
                    folder,
                    offset=offset,
                    limit=limit,
                    unread_only=unread_only,
                    starred_only=starred_only,
                )
            return MessagePage(messages=messages, total=total, page=page, limit=limit)

        return self._cache.read(user_id, load, query=query)

    def list_drafts(
        self, user_id: str, *, page: int = 1, limit: int | None = None
    ) -> DraftPage:
        """Return one page of the drafts view."""
        page, limit = self._page_bounds(page, limit)
        query = list_query(
            DRAFTS, page=page, limit=limit, default_limit=self._settings.default_page_size
        )

        def load() -> DraftPage:
            drafts, total = self._store.list_drafts(
                user_id, offset=(page - 1) * limit, limit=limit
            )
            return DraftPage(drafts=drafts, total=total, page=page, limit=limit)

        return self._cache.read(user_id, load, query=query)

    def get_thread(self, user_id: str, thread_id: str) -> list[Message]:
        """Return a thread's messages, oldest first."""
        return list(
            self._cache.read(
                user_id,
                lambda: self._store.list_thread(user_id, thread_id),
                tag=thread_tag(thread_id),
            )
        )

    def _check_folder(self, user_id: str, folder: str) -> None:
        if folder == DRAFTS:
            raise ValidationError("Use list_drafts for the drafts folder")
        if folder in SYSTEM_FOLDERS or folder == STARRED_VIEW:
            return
        if not any(custom.id == folder for custom in self._store.list_folders(user_id)):
            raise ValidationError(f"Unknown folder '{folder}'")

    def _page_bounds(self, page: int, limit: int | None) -> tuple[int, int]:
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if limit is None:
            limit = self._settings.default_page_size
        if limit < 1:
            raise ValidationError("limit must be 1 or greater")
        return page, min(limit, self._settings.max_page_size)


__all__ = ["MailboxViews", "list_query"]
