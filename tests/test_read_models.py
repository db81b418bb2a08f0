"""Tests for the draft resolver, folder counts and cached views."""

from __future__ import annotations

from datetime import timedelta

import pytest

from mailroom.cache import counts_tag, thread_tag
from mailroom.core.config import ApiSettings
from mailroom.core.errors import ValidationError
from mailroom.core.models import (
    ARCHIVE,
    DRAFTS,
    INBOX,
    SPAM,
    STARRED_VIEW,
    SYSTEM_FOLDERS,
    Draft,
    DraftContent,
    FolderCount,
    SetRead,
)
from mailroom.drafts import DraftThreadResolver
from mailroom.projection import FolderCountsProjection, MailboxViews, list_query

from conftest import BASE_TIME


def _reply_draft(draft_id: str, user_id: str, reply_to: str, minutes: int) -> Draft:
    stamp = BASE_TIME + timedelta(minutes=minutes)
    return Draft(
        id=draft_id,
        user_id=user_id,
        content=DraftContent(subject="Re", in_reply_to_id=reply_to),
        created_at=stamp,
        updated_at=stamp,
    )


# Draft resolver --------------------------------------------------------------
def test_created_draft_is_found_for_its_thread(coordinator, make_message, store, user) -> None:
    make_message(id="m1", thread_id="T")
    second = make_message(id="m2", thread_id="T")

    draft = coordinator.create_draft(user, DraftContent(in_reply_to_id=second.message_id))

    assert DraftThreadResolver(store).find_draft_for_thread(user.id, "T").id == draft.id


def test_most_recently_edited_draft_wins(make_message, store, user) -> None:
    first = make_message(thread_id="T")
    second = make_message(thread_id="T")
    store.persist_draft(_reply_draft("d1", user.id, first.message_id, minutes=1))
    store.persist_draft(_reply_draft("d2", user.id, second.message_id, minutes=2))

    resolved = DraftThreadResolver(store).find_draft_for_thread(user.id, "T")

    assert resolved.id == "d2"
    assert store.fetch_draft("d1") is not None


def test_resolver_returns_none_without_thread_or_draft(make_message, store, user) -> None:
    resolver = DraftThreadResolver(store)
    assert resolver.find_draft_for_thread(user.id, "empty") is None

    make_message(thread_id="T")
    assert resolver.find_draft_for_thread(user.id, "T") is None


def test_resolver_ignores_other_users_drafts(make_message, store, user, other_user) -> None:
    message = make_message(thread_id="T")
    store.persist_draft(_reply_draft("theirs", other_user.id, message.message_id, minutes=1))

    assert DraftThreadResolver(store).find_draft_for_thread(user.id, "T") is None


# Folder counts ---------------------------------------------------------------
def test_counts_cover_every_folder(coordinator, make_message, store, fabric, user) -> None:
    folder = coordinator.create_folder(user, "Projects")
    make_message()
    make_message(read=True, starred=True)
    make_message(folder=SPAM, starred=True)
    coordinator.create_draft(user, DraftContent(subject="draft"))

    counts = FolderCountsProjection(store, fabric).get_folder_counts(user.id)

    assert set(SYSTEM_FOLDERS) <= set(counts)
    assert counts[INBOX] == FolderCount(total=2, unread=1)
    assert counts[ARCHIVE] == FolderCount()
    assert counts[DRAFTS] == FolderCount(total=1, unread=0)
    assert counts[STARRED_VIEW] == FolderCount(total=1, unread=0)
    assert counts[folder.id] == FolderCount()


def test_counts_are_cached_until_invalidated(coordinator, make_message, store, fabric, user) -> None:
    projection = FolderCountsProjection(store, fabric)
    make_message(id="m1")
    assert projection.get_folder_counts(user.id)[INBOX].unread == 1

    store.update_message("m1", user.id, {"read": True})
    assert projection.get_folder_counts(user.id)[INBOX].unread == 1

    fabric.invalidate_user(user.id, [counts_tag(user.id)])
    assert projection.get_folder_counts(user.id)[INBOX].unread == 0


def test_counts_callers_cannot_mutate_the_cached_copy(make_message, store, fabric, user) -> None:
    projection = FolderCountsProjection(store, fabric)
    make_message()
    projection.get_folder_counts(user.id).clear()

    assert projection.get_folder_counts(user.id)[INBOX].total == 1


# Views -----------------------------------------------------------------------
def test_list_query_is_canonical() -> None:
    assert list_query(INBOX, page=1, limit=25, default_limit=25) == INBOX
    assert (
        list_query(INBOX, page=2, limit=10, default_limit=25, unread_only=True)
        == "inbox?limit=10&page=2&unread=1"
    )


def test_list_messages_is_served_from_list_cache(coordinator, make_message, store, fabric, user) -> None:
    views = MailboxViews(store, fabric)
    make_message(id="m1")

    first = views.list_messages(user.id, INBOX)
    assert fabric.lists.keys_for(user.id) == frozenset({f"{user.id}:inbox"})

    make_message(id="m2")
    assert views.list_messages(user.id, INBOX).total == first.total == 1

    coordinator.apply_single(user, "m1", [SetRead(True)])
    refreshed = views.list_messages(user.id, INBOX)
    assert refreshed.total == 2
    assert {message.id: message.read for message in refreshed.messages}["m1"] is True


def test_list_messages_filters_and_bounds(make_message, store, fabric, user) -> None:
    views = MailboxViews(store, fabric, ApiSettings(default_page_size=2, max_page_size=3))
    for _ in range(4):
        make_message()
    make_message(starred=True, folder=ARCHIVE)

    page = views.list_messages(user.id, INBOX, page=2)
    assert [message.id for message in page.messages] == ["m2", "m1"]
    assert views.list_messages(user.id, INBOX, limit=50).limit == 3
    assert views.list_messages(user.id, STARRED_VIEW).total == 1
    with pytest.raises(ValidationError):
        views.list_messages(user.id, INBOX, page=0)
    with pytest.raises(ValidationError):
        views.list_messages(user.id, DRAFTS)


def test_drafts_view_lists_drafts(coordinator, store, fabric, user) -> None:
    views = MailboxViews(store, fabric)
    coordinator.create_draft(user, DraftContent(subject="one"))
    assert views.list_drafts(user.id).total == 1

    coordinator.create_draft(user, DraftContent(subject="two"))
    assert views.list_drafts(user.id).total == 2


def test_thread_view_uses_thread_tag(coordinator, make_message, store, fabric, user) -> None:
    views = MailboxViews(store, fabric)
    make_message(id="a", thread_id="T")
    make_message(id="b", thread_id="T")

    assert [message.id for message in views.get_thread(user.id, "T")] == ["a", "b"]
    assert fabric.tags.keys_for(thread_tag("T"))

    coordinator.apply_single(user, "a", [SetRead(True)])
    assert views.get_thread(user.id, "T")[0].read is True


def test_counts_do_not_occupy_a_list_key(make_message, store, fabric, user) -> None:
    make_message()

    FolderCountsProjection(store, fabric).get_folder_counts(user.id)

    assert fabric.lists.keys_for(user.id) == frozenset()
    assert fabric.tags.keys_for(counts_tag(user.id))


def test_list_messages_rejects_unknown_folders(coordinator, make_message, store, fabric, user) -> None:
    views = MailboxViews(store, fabric)
    folder = coordinator.create_folder(user, "Projects")
    make_message(folder=folder.id)

    assert views.list_messages(user.id, folder.id).total == 1
    for name in ("counts", "nowhere"):
        with pytest.raises(ValidationError, match="Unknown folder"):
            views.list_messages(user.id, name)
    assert fabric.lists.keys_for(user.id) == frozenset({f"{user.id}:{folder.id}"})
