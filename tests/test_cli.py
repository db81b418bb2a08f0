"""Tests for the command-line entry point."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from mailroom.cache import CacheFabric
from mailroom.cli import build_parser, execute
from mailroom.core.config import AppSettings, StorageSettings
from mailroom.core.models import ARCHIVE, INBOX, DraftContent
from mailroom.projection import MailboxViews
from mailroom.web import create_app

from conftest import RecordingDispatcher


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(storage=StorageSettings(db_path=tmp_path / "mailbox.db"))


def _run(
    settings: AppSettings, *argv: str, transport: httpx.AsyncBaseTransport | None = None
) -> int:
    return execute(build_parser().parse_args(list(argv)), settings, transport=transport)


def test_info_prints_configuration(settings: AppSettings, capsys) -> None:
    assert _run(settings) == 0

    output = capsys.readouterr().out
    assert "Mailroom is ready." in output
    assert "log only" in output


def test_commands_require_user(settings: AppSettings, capsys) -> None:
    assert _run(settings, "counts") == 2
    assert "--user" in capsys.readouterr().out


def test_counts_command(settings: AppSettings, make_message, capsys) -> None:
    make_message()

    assert _run(settings, "counts", "--user", "user-1") == 0

    lines = capsys.readouterr().out.splitlines()
    inbox = next(line for line in lines if line.startswith("inbox"))
    assert "total=1" in inbox and "unread=1" in inbox


def test_thread_draft_command(settings: AppSettings, coordinator, make_message, user, capsys) -> None:
    parent = make_message(thread_id="T")
    assert _run(settings, "thread-draft", "--user", user.id, "--thread", "T") == 1

    draft = coordinator.create_draft(
        user, DraftContent(subject="Re: plans", in_reply_to_id=parent.message_id)
    )

    assert _run(settings, "thread-draft", "--user", user.id, "--thread", "T") == 0
    assert f"{draft.id} | updated" in capsys.readouterr().out


def test_bulk_command_goes_through_the_api(
    settings: AppSettings, make_message, store, user, capsys
) -> None:
    make_message(id="m1")
    make_message(id="m2", folder=ARCHIVE)
    served_cache = CacheFabric()
    events = RecordingDispatcher()
    app = create_app(settings, cache=served_cache, dispatcher=events)
    MailboxViews(store, served_cache).list_messages(user.id, INBOX)
    assert served_cache.lists.keys_for(user.id)

    code = _run(
        settings, "bulk", "--user", user.id, "--org", user.org_id,
        "--action", "archive", "--ids", "m1", "m2",
        transport=httpx.ASGITransport(app=app),
    )

    assert code == 1
    output = capsys.readouterr().out
    assert "1 of 2 updated" in output
    assert "m2: validation" in output
    assert store.fetch_message("m1").folder == ARCHIVE
    assert served_cache.lists.keys_for(user.id) == frozenset()
    assert events.names() == ["message.updated"]


def test_bulk_command_reports_unreachable_api(settings: AppSettings, capsys) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    code = _run(
        settings, "bulk", "--user", "user-1", "--action", "read", "--ids", "m1",
        transport=httpx.MockTransport(refuse),
    )

    assert code == 1
    assert "Bulk read failed" in capsys.readouterr().out
