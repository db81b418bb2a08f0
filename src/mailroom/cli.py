"""Command-line entry point for Mailroom."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

import httpx
import uvicorn

from mailroom.cache import CacheFabric
from mailroom.client import MailboxApiClient
from mailroom.core import AppSettings, MailroomError, configure_logging, load_app_settings
from mailroom.core.models import BULK_ACTIONS, AuthUser
from mailroom.drafts import DraftThreadResolver
from mailroom.projection import FolderCountsProjection
from mailroom.storage import SqliteMailboxStore
from mailroom.web import create_app


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Mailroom mailbox service")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "counts", "thread-draft", "bulk", "serve"],
        help="Operation to execute.",
    )
    parser.add_argument("--user", default=None, help="User id to act as.")
    parser.add_argument("--org", default="", help="Organisation id of the user.")
    parser.add_argument(
        "--thread", default=None, help="Thread id for the thread-draft command."
    )
    parser.add_argument(
        "--action",
        choices=BULK_ACTIONS,
        default=None,
        help="Bulk action to apply (bulk command).",
    )
    parser.add_argument(
        "--ids",
        nargs="+",
        default=[],
        help="Message ids for the bulk command.",
    )
    parser.add_argument(
        "--folder",
        default=None,
        help="Folder the ids were selected in (bulk command).",
    )
    parser.add_argument(
        "--api-url",
        default="http://127.0.0.1:8000",
        help="Base URL of the running Mailroom API (bulk command).",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Bind host for serve.")
    parser.add_argument("--port", type=int, default=8000, help="Bind port for serve.")
    return parser


def execute(
    args: argparse.Namespace,
    settings: AppSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Execute the requested CLI command and return the exit status.

    ``transport`` replaces the network transport used to reach the API.
    """
    command = args.command
    if command == "info":
        print("Mailroom is ready.")
        print(f"Database path: {settings.storage.db_path}")
        print(
            "Cache TTLs: list "
            f"{settings.cache.list_ttl_seconds}s, tag {settings.cache.tag_ttl_seconds}s"
        )
        print(f"Event webhook: {settings.dispatch.webhook_url or 'log only'}")
        return 0
    if command == "serve":
        return _run_serve(settings, host=args.host, port=args.port)

    if not args.user:
        print(f"The {command} command requires --user.")
        return 2
    if command == "counts":
        return _run_counts(settings, args.user)
    if command == "thread-draft":
        if not args.thread:
            print("The thread-draft command requires --thread.")
            return 2
        return _run_thread_draft(settings, args.user, args.thread)
    if not args.action or not args.ids:
        print("The bulk command requires --action and --ids.")
        return 2
    return asyncio.run(
        _run_bulk(
            AuthUser(id=args.user, org_id=args.org),
            api_url=args.api_url,
            action=args.action,
            message_ids=args.ids,
            folder=args.folder,
            transport=transport,
        )
    )


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


def _run_counts(settings: AppSettings, user_id: str) -> int:
    """Print the folder counts projection for a user."""
    with SqliteMailboxStore(settings.storage) as store:
        counts = FolderCountsProjection(store, CacheFabric(settings.cache))
        for folder, count in sorted(counts.get_folder_counts(user_id).items()):
            print(f"{folder:<36} total={count.total:<6} unread={count.unread}")
    return 0


def _run_thread_draft(settings: AppSettings, user_id: str, thread_id: str) -> int:
    """Print the draft that continues a thread, if any."""
    with SqliteMailboxStore(settings.storage) as store:
        draft = DraftThreadResolver(store).find_draft_for_thread(user_id, thread_id)
    if draft is None:
        print(f"No draft continues thread {thread_id}.")
        return 1
    subject = draft.content.subject or "(no subject)"
    print(f"{draft.id} | updated {draft.updated_at.isoformat()} | {subject}")
    return 0


async def _run_bulk(
    user: AuthUser,
    *,
    api_url: str,
    action: str,
    message_ids: list[str],
    folder: str | None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Apply a bulk action through the running API and report per-id results.

    Going through the server keeps its caches and event stream in step with
    the store.
    """
    http = httpx.AsyncClient(base_url=api_url, transport=transport, timeout=30.0)
    try:
        async with MailboxApiClient(user, client=http) as api:
            result = await api.bulk_update(action, message_ids, folder)
    except MailroomError as exc:
        print(f"Bulk {action} failed: {exc}")
        return 1
    finally:
        await http.aclose()

    print(f"{len(result.updated)} of {len(dict.fromkeys(message_ids))} updated")
    for failure in result.failed:
        print(f"  {failure.id}: {failure.code} ({failure.reason})")
    return 0 if not result.failed else 1


def _run_serve(settings: AppSettings, *, host: str, port: int) -> int:
    """Run the HTTP API with uvicorn."""
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)
    return 0


if __name__ == "__main__":
    main()
