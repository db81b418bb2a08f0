"""Tests for the FastAPI mailbox API."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from mailroom.core.config import AppSettings, DispatchSettings, StorageSettings
from mailroom.core.errors import DispatchError
from mailroom.core.models import ARCHIVE, INBOX, TRASH
from mailroom.dispatch import BackgroundEventDispatcher
from mailroom.web import create_app

from conftest import RecordingDispatcher

HEADERS = {"X-User-Id": "user-1", "X-Org-Id": "org-1"}


@pytest.fixture
def events() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def client(tmp_path: Path, store, events: RecordingDispatcher) -> Iterator[TestClient]:
    # ``store`` points at the same database file so tests can seed messages.
    settings = AppSettings(storage=StorageSettings(db_path=tmp_path / "mailbox.db", pool_size=2))
    with TestClient(create_app(settings, dispatcher=events)) as test_client:
        test_client.headers.update(HEADERS)
        yield test_client


def test_requests_without_identity_are_rejected(client: TestClient) -> None:
    response = client.get("/messages/counts", headers={"X-User-Id": ""})

    assert response.status_code == 401


def test_counts_include_every_system_folder(client: TestClient, make_message) -> None:
    make_message()
    make_message(read=True)

    counts = client.get("/messages/counts").json()

    assert counts[INBOX] == {"total": 2, "unread": 1}
    assert counts[TRASH] == {"total": 0, "unread": 0}
    assert counts["drafts"] == {"total": 0, "unread": 0}


def test_list_messages_returns_page(client: TestClient, make_message) -> None:
    make_message(id="m1")
    make_message(id="m2", folder=ARCHIVE)

    body = client.get("/messages", params={"folder": INBOX}).json()

    assert body["total"] == 1
    assert body["page"] == 1
    assert [message["id"] for message in body["messages"]] == ["m1"]
    assert body["messages"][0]["from"] == "sender@example.com"
    assert body["messages"][0]["threadId"] == "thread-1"


def test_list_rejects_unknown_folder_and_counts_stay_intact(
    client: TestClient, make_message
) -> None:
    make_message()

    assert client.get("/messages", params={"folder": "counts"}).status_code == 400
    assert client.get("/messages", params={"folder": "nowhere"}).status_code == 400
    counts = client.get("/messages/counts")
    assert counts.status_code == 200
    assert counts.json()[INBOX] == {"total": 1, "unread": 1}
    assert client.get("/messages", params={"folder": "counts"}).status_code == 400
    assert client.get("/messages/counts").status_code == 200


def test_patch_marks_read_and_refreshes_counts(
    client: TestClient, make_message, events: RecordingDispatcher
) -> None:
    make_message(id="m1")
    assert client.get("/messages/counts").json()[INBOX]["unread"] == 1

    response = client.patch("/messages/m1", json={"read": True})

    assert response.status_code == 200
    assert response.json()["read"] is True
    assert client.get("/messages/counts").json()[INBOX]["unread"] == 0
    assert events.names() == ["message.updated"]


def test_patch_rejects_bad_requests(client: TestClient, make_message) -> None:
    make_message(id="m1")
    make_message(id="theirs", user_id="user-2")

    assert client.patch("/messages/m1", json={}).status_code == 400
    assert client.patch("/messages/m1", json={"subject": "x"}).status_code == 422
    assert client.patch("/messages/m1", json={"folder": "sent"}).status_code == 400
    assert client.patch("/messages/missing", json={"read": True}).status_code == 404

    foreign = client.patch("/messages/theirs", json={"read": True})
    assert foreign.status_code == 400
    assert "error" in foreign.json()


def test_bulk_update_reports_partial_failure(
    client: TestClient, make_message, events: RecordingDispatcher
) -> None:
    make_message(id="m1")
    make_message(id="m2", folder=ARCHIVE)

    response = client.post(
        "/bulk-update",
        json={"action": "archive", "messageIds": ["m1", "m2", "ghost"], "currentFolder": INBOX},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["updated"] == ["m1"]
    assert [(item["id"], item["code"]) for item in body["failed"]] == [
        ("m2", "validation"),
        ("ghost", "not_found"),
    ]
    assert events.names() == ["message.updated"]
    assert client.get("/messages/counts").json()[ARCHIVE]["total"] == 2


def test_bulk_update_validates_body(client: TestClient) -> None:
    assert client.post("/bulk-update", json={"action": "read", "messageIds": []}).status_code == 422

    body = client.post("/bulk-update", json={"action": "explode", "messageIds": ["m1"]}).json()
    assert body["updated"] == []
    assert body["failed"][0]["code"] == "validation"


def test_delete_forever_only_from_trash(client: TestClient, make_message) -> None:
    make_message(id="inbox-msg")
    make_message(id="trash-msg", folder=TRASH)

    assert client.delete("/messages/inbox-msg").status_code == 400
    assert client.delete("/messages/trash-msg").status_code == 204
    assert client.delete("/messages/trash-msg").status_code == 404


def test_thread_detail(client: TestClient, make_message) -> None:
    make_message(id="a", thread_id="T")
    make_message(id="b", thread_id="T")

    body = client.get("/threads/T").json()

    assert body["threadId"] == "T"
    assert [message["id"] for message in body["messages"]] == ["a", "b"]
    assert client.get("/threads/unknown").status_code == 404


def test_draft_lifecycle_through_thread_lookup(client: TestClient, make_message) -> None:
    make_message(id="m1", thread_id="T")
    parent = make_message(id="m2", thread_id="T")
    assert client.get("/drafts/by-thread/T").status_code == 404

    created = client.post(
        "/drafts", json={"subject": "Re: hi", "inReplyToId": parent.message_id, "to": ["a@x.io"]}
    )
    assert created.status_code == 201
    draft_id = created.json()["id"]

    found = client.get("/drafts/by-thread/T").json()
    assert found["id"] == draft_id

    patched = client.patch(f"/drafts/{draft_id}", json={"bodyHtml": "<p>hello</p>"}).json()
    assert patched["subject"] == "Re: hi"
    assert patched["bodyHtml"] == "<p>hello</p>"
    assert patched["to"] == ["a@x.io"]

    listed = client.get("/messages", params={"folder": "drafts"}).json()
    assert [draft["id"] for draft in listed["drafts"]] == [draft_id]
    assert client.get("/messages/counts").json()["drafts"]["total"] == 1

    assert client.delete(f"/drafts/{draft_id}").status_code == 204
    assert client.get("/drafts/by-thread/T").status_code == 404
    assert client.delete(f"/drafts/{draft_id}").status_code == 404


def test_folder_crud(client: TestClient, events: RecordingDispatcher) -> None:
    created = client.post("/folders", json={"name": "Projects"})
    assert created.status_code == 201
    folder = created.json()
    assert folder["color"] == "#3B82F6"

    assert client.post("/folders", json={"name": "Projects"}).status_code == 409
    assert client.post("/folders", json={"name": "inbox"}).status_code == 400
    assert client.patch(f"/folders/{folder['id']}", json={"color": "red"}).status_code == 400

    renamed = client.patch(f"/folders/{folder['id']}", json={"name": "Work"})
    assert renamed.json()["name"] == "Work"
    assert [item["name"] for item in client.get("/folders").json()] == ["Work"]
    assert folder["id"] in client.get("/messages/counts").json()

    assert client.delete(f"/folders/{folder['id']}").status_code == 204
    assert client.get("/folders").json() == []
    assert "folder.deleted" in events.names()


def test_label_crud(client: TestClient, make_message) -> None:
    make_message(id="m1", labels=("work",), thread_id="T")
    label = client.post("/labels", json={"name": "work", "color": "#10b981"}).json()
    assert label["color"] == "#10B981"
    assert client.post("/labels", json={"name": "work"}).status_code == 409

    client.patch(f"/labels/{label['id']}", json={"name": "job"})
    assert client.get("/threads/T").json()["messages"][0]["labels"] == ["job"]

    assert client.delete(f"/labels/{label['id']}").status_code == 204
    assert client.get("/labels").json() == []
    assert client.get("/threads/T").json()["messages"][0]["labels"] == []


def test_app_closes_the_dispatcher_it_built(tmp_path: Path) -> None:
    settings = AppSettings(
        storage=StorageSettings(db_path=tmp_path / "mailbox.db"),
        dispatch=DispatchSettings(webhook_url="https://hooks.example.com/mail"),
    )
    app = create_app(settings)
    with TestClient(app):
        dispatcher = app.state.dispatcher
        assert isinstance(dispatcher, BackgroundEventDispatcher)

    assert dispatcher.inner.client.is_closed
    with pytest.raises(DispatchError, match="closed"):
        dispatcher.notify("user-1", "message.updated", {})
