"""Tests for the async API client and the optimistic mailbox session."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from mailroom.client import MailboxApiClient, MailboxSession, ViewState
from mailroom.core.config import AppSettings, StorageSettings
from mailroom.core.errors import NotFoundError, StoreWriteError, ValidationError
from mailroom.core.models import ARCHIVE, INBOX, TRASH, AuthUser
from mailroom.web import create_app

from conftest import RecordingDispatcher

USER = AuthUser(id="user-1", org_id="org-1")


def _listing(*ids: str) -> dict[str, Any]:
    return {
        "folder": INBOX,
        "messages": [{"id": message_id, "read": False} for message_id in ids],
        "total": len(ids),
        "page": 1,
        "limit": 25,
    }


class FakeMailbox:
    """Routes requests to canned responses keyed by ``(method, path)``."""

    def __init__(self, listing: dict[str, Any]) -> None:
        self.listing = listing
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.requests: list[httpx.Request] = []
        self.before_reply = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.before_reply is not None:
            self.before_reply()
        if request.method == "GET" and request.url.path == "/messages":
            return httpx.Response(200, json=self.listing)
        return self.routes.get(
            (request.method, request.url.path), httpx.Response(200, json={})
        )

    def api(self) -> MailboxApiClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self), base_url="http://test")
        return MailboxApiClient(USER, client=http)


@pytest.fixture
def app(tmp_path: Path, store):
    settings = AppSettings(storage=StorageSettings(db_path=tmp_path / "mailbox.db", pool_size=2))
    return create_app(settings, dispatcher=RecordingDispatcher())


@pytest.mark.asyncio
async def test_session_against_live_app(app, make_message) -> None:
    make_message(id="m1")
    make_message(id="m2")
    make_message(id="m3", folder=TRASH)
    transport = httpx.ASGITransport(app=app)

    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        api = MailboxApiClient(USER, client=http)
        session = MailboxSession(api, INBOX)
        await session.refresh()
        assert [message["id"] for message in session.messages] == ["m2", "m1"]

        await session.mark_read("m1")
        assert session.state.state_of("m1") is ViewState.OPTIMISTIC_READ
        result = await session.apply_bulk("archive", ["m2"])
        assert result.updated == ["m2"]
        assert [message["id"] for message in session.messages] == ["m1"]

        await session.refresh()
        assert len(session.state) == 0
        assert session.messages[0]["read"] is True
        assert session.total == 1

        counts = await api.folder_counts()
        assert counts[ARCHIVE].total == 1
        assert counts[INBOX].unread == 0
        assert await api.find_draft_for_thread("thread-1") is None
        assert [message["id"] for message in await api.get_thread("thread-1")] == ["m1", "m2", "m3"]


@pytest.mark.asyncio
async def test_failed_request_reverts_and_notifies() -> None:
    mailbox = FakeMailbox(_listing("m1"))
    mailbox.routes[("PATCH", "/messages/m1")] = httpx.Response(503, json={"error": "down"})
    errors: list[str] = []
    session = MailboxSession(mailbox.api(), INBOX, on_error=errors.append)
    await session.refresh()

    await session.mark_read("m1")

    assert session.state.state_of("m1") is ViewState.CONFIRMED
    assert session.messages[0]["read"] is False
    assert errors == ["Could not mark message as read: down"]
    assert session.notices == errors


@pytest.mark.asyncio
async def test_bulk_partial_failure_reappears_with_summary() -> None:
    mailbox = FakeMailbox(_listing("m1", "m2", "m3"))
    mailbox.routes[("POST", "/bulk-update")] = httpx.Response(
        200,
        json={
            "updated": ["m1"],
            "failed": [
                {"id": "m2", "reason": "Cannot move", "code": "validation"},
                {"id": "m3", "reason": "Message m3 not found", "code": "not_found"},
            ],
        },
    )
    session = MailboxSession(mailbox.api(), INBOX)
    await session.refresh()
    session.open("m2")

    result = await session.apply_bulk("archive", ["m1", "m2", "m3"])

    assert [failure.id for failure in result.failed] == ["m2", "m3"]
    assert [message["id"] for message in session.messages] == ["m2"]
    assert session.open_message_id is None
    assert session.notices == ["1 of 3 updated"]
    sent = json.loads(mailbox.requests[-1].content)
    assert sent == {"action": "archive", "messageIds": ["m1", "m2", "m3"], "currentFolder": INBOX}


@pytest.mark.asyncio
async def test_stale_refresh_does_not_resurrect_archived_message() -> None:
    mailbox = FakeMailbox(_listing("m1", "m2"))
    mailbox.routes[("POST", "/bulk-update")] = httpx.Response(
        200, json={"updated": ["m1"], "failed": []}
    )
    session = MailboxSession(mailbox.api(), INBOX)
    await session.refresh()

    await session.apply_bulk("archive", ["m1"])
    # a list served before the archive landed still contains m1
    await session.refresh()
    assert [message["id"] for message in session.messages] == ["m2"]

    mailbox.listing = _listing("m2")
    await session.refresh()
    assert [message["id"] for message in session.messages] == ["m2"]
    assert len(session.state) == 0


@pytest.mark.asyncio
async def test_missing_message_counts_as_settled() -> None:
    mailbox = FakeMailbox(_listing("m1"))
    mailbox.routes[("DELETE", "/messages/m1")] = httpx.Response(
        404, json={"error": "Message m1 not found"}
    )
    session = MailboxSession(mailbox.api(), TRASH)
    await session.refresh()

    await session.delete_forever("m1")

    assert session.messages == []
    assert session.notices == []


@pytest.mark.asyncio
async def test_closed_view_ignores_late_responses() -> None:
    mailbox = FakeMailbox(_listing("m1"))
    mailbox.routes[("PATCH", "/messages/m1")] = httpx.Response(503, json={"error": "down"})
    session = MailboxSession(mailbox.api(), INBOX)
    await session.refresh()
    mailbox.before_reply = session.close

    await session.mark_read("m1")
    await session.refresh()

    assert session.active is False
    assert session.notices == []
    assert session.state.state_of("m1") is ViewState.OPTIMISTIC_READ


@pytest.mark.asyncio
async def test_api_client_maps_error_statuses() -> None:
    mailbox = FakeMailbox(_listing())
    mailbox.routes[("PATCH", "/messages/a")] = httpx.Response(409, json={"error": "clash"})
    mailbox.routes[("PATCH", "/messages/b")] = httpx.Response(422, json={"detail": "bad body"})
    mailbox.routes[("PATCH", "/messages/c")] = httpx.Response(404, json={"error": "gone"})
    mailbox.routes[("PATCH", "/messages/d")] = httpx.Response(500, text="boom")

    async with mailbox.api() as api:
        with pytest.raises(ValidationError, match="clash"):
            await api.patch_message("a", read=True)
        with pytest.raises(ValidationError, match="bad body"):
            await api.patch_message("b", read=True)
        with pytest.raises(NotFoundError):
            await api.patch_message("c", read=True)
        with pytest.raises(StoreWriteError, match="boom"):
            await api.patch_message("d", read=True)

    request = mailbox.requests[0]
    assert request.headers["X-User-Id"] == "user-1"
    assert request.headers["X-Org-Id"] == "org-1"
    assert json.loads(request.content) == {"read": True}


@pytest.mark.asyncio
async def test_api_client_wraps_transport_errors() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://test")
    async with MailboxApiClient(USER, client=http) as api:
        with pytest.raises(StoreWriteError):
            await api.delete_draft("d1")
    await http.aclose()
