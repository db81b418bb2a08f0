"""Shared fixtures for the mailroom test-suite."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from mailroom.cache import CacheFabric
from mailroom.core.config import StorageSettings
from mailroom.core.models import INBOX, AuthUser, Message
from mailroom.mutations import MutationCoordinator
from mailroom.storage import SqliteMailboxStore

BASE_TIME = datetime(2025, 10, 24, 15, 0, tzinfo=timezone.utc)

MessageFactory = Callable[..., Message]


class RecordingDispatcher:
    """Event dispatcher double that keeps every notification."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def notify(self, user_id: str, event: str, payload: Mapping[str, Any]) -> None:
        self.events.append((user_id, event, dict(payload)))

    def names(self) -> list[str]:
        return [event for _, event, _ in self.events]


@pytest.fixture
def user() -> AuthUser:
    return AuthUser(id="user-1", org_id="org-1")


@pytest.fixture
def other_user() -> AuthUser:
    return AuthUser(id="user-2", org_id="org-1")


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SqliteMailboxStore]:
    with SqliteMailboxStore(StorageSettings(db_path=tmp_path / "mailbox.db")) as db:
        yield db


@pytest.fixture
def fabric() -> CacheFabric:
    return CacheFabric()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def coordinator(
    store: SqliteMailboxStore, fabric: CacheFabric, dispatcher: RecordingDispatcher
) -> MutationCoordinator:
    return MutationCoordinator(store, fabric, dispatcher)


@pytest.fixture
def make_message(store: SqliteMailboxStore, user: AuthUser) -> MessageFactory:
    """Persist and return a message; keyword arguments override the defaults."""

    counter = {"value": 0}

    def factory(**overrides: Any) -> Message:
        counter["value"] += 1
        index = counter["value"]
        fields: dict[str, Any] = {
            "id": f"m{index}",
            "user_id": user.id,
            "org_id": user.org_id,
            "thread_id": "thread-1",
            "message_id": f"<m{index}@example.com>",
            "folder": INBOX,
            "read": False,
            "starred": False,
            "labels": (),
            "sender": "sender@example.com",
            "to": ("user@example.com",),
            "cc": (),
            "bcc": (),
            "subject": f"Message {index}",
            "body_text": "Hello",
            "body_html": None,
            "attachments": (),
            "created_at": BASE_TIME + timedelta(minutes=index),
        }
        fields.update(overrides)
        message = Message(**fields)
        store.persist_message(message)
        return message

    return factory
