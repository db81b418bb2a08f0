"""SQLite-backed mailbox store implementation."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType
from typing import Any

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime
from ..core.errors import ConflictError, NotFoundError, StoreWriteError
from ..core.interfaces import MailboxStore
from ..core.models import (
    AttachmentRef,
    Draft,
    DraftContent,
    Folder,
    FolderCount,
    Label,
    Message,
    SPAM,
    TRASH,
)

LOGGER = logging.getLogger(__name__)

# Patchable message fields and the columns backing them.
_MESSAGE_COLUMNS: Mapping[str, str] = {
    "read": "is_read",
    "starred": "starred",
    "folder": "folder",
}

_MESSAGE_SELECT = """
    SELECT
        id,
        user_id,
        org_id,
        thread_id,
        message_id,
        folder,
        is_read,
        starred,
        labels,
        sender,
        to_recipients,
        cc_recipients,
        bcc_recipients,
        subject,
        body_text,
        body_html,
        attachments,
        created_at
    FROM messages
"""

_DRAFT_SELECT = """
    SELECT
        id,
        user_id,
        in_reply_to_id,
        to_recipients,
        cc_recipients,
        bcc_recipients,
        subject,
        body_html,
        body_text,
        attachments,
        created_at,
        updated_at
    FROM drafts
"""

# Keeps ``IN (...)`` lists well under SQLite's bound-parameter limit.
_IN_CHUNK_SIZE = 500


class SqliteMailboxStore(MailboxStore):
    """Persist messages, drafts, folders and labels using SQLite."""

    def __init__(self, settings: StorageSettings) -> None:
        """Initialise the store and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(
            db_path,
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._apply_migrations()
        self._ensure_indexes()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteMailboxStore:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Messages ----------------------------------------------------------------
    def persist_message(self, message: Message) -> None:
        """Insert or update the stored record for ``message``."""
        LOGGER.debug("Persisting message %s", message.id)
        if not message.id:
            raise ValueError("Message id is required")
        if not message.user_id:
            raise ValueError("Message user_id is required")

        with self._write(f"persist message {message.id}") as conn:
            conn.execute(
                """
                INSERT INTO messages (
                    id,
                    user_id,
                    org_id,
                    thread_id,
                    message_id,
                    folder,
                    is_read,
                    starred,
                    labels,
                    sender,
                    to_recipients,
                    cc_recipients,
                    bcc_recipients,
                    subject,
                    body_text,
                    body_html,
                    attachments,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    user_id=excluded.user_id,
                    org_id=excluded.org_id,
                    thread_id=excluded.thread_id,
                    message_id=excluded.message_id,
                    folder=excluded.folder,
                    is_read=excluded.is_read,
                    starred=excluded.starred,
                    labels=excluded.labels,
                    sender=excluded.sender,
                    to_recipients=excluded.to_recipients,
                    cc_recipients=excluded.cc_recipients,
                    bcc_recipients=excluded.bcc_recipients,
                    subject=excluded.subject,
                    body_text=excluded.body_text,
                    body_html=excluded.body_html,
                    attachments=excluded.attachments,
                    created_at=excluded.created_at
                """,
                (
                    message.id,
                    message.user_id,
                    message.org_id,
                    message.thread_id,
                    message.message_id,
                    message.folder,
                    1 if message.read else 0,
                    1 if message.starred else 0,
                    _dump_labels(message.labels),
                    message.sender,
                    ",".join(message.to),
                    ",".join(message.cc),
                    ",".join(message.bcc),
                    message.subject,
                    message.body_text,
                    message.body_html,
                    _dump_attachments(message.attachments),
                    serialize_datetime(message.created_at),
                ),
            )

    def fetch_message(self, message_id: str) -> Message | None:
        """Retrieve a stored message."""
        cur = self._connection.execute(f"{_MESSAGE_SELECT} WHERE id = ?", (message_id,))
        row = cur.fetchone()
        return _row_to_message(row) if row is not None else None

    def update_message(
        self, message_id: str, user_id: str, changes: Mapping[str, Any]
    ) -> Message:
        """Apply ``changes`` to one message in a single UPDATE statement."""
        if not changes:
            raise ValueError("At least one change is required")
        unknown = set(changes) - set(_MESSAGE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported message fields: {sorted(unknown)}")

        assignments = ", ".join(f"{_MESSAGE_COLUMNS[key]} = ?" for key in changes)
        values = [_to_column_value(value) for value in changes.values()]
        with self._write(f"update message {message_id}") as conn:
            cur = conn.execute(
                f"UPDATE messages SET {assignments} WHERE id = ? AND user_id = ?",
                (*values, message_id, user_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Message {message_id} not found")
        updated = self.fetch_message(message_id)
        if updated is None:
            raise NotFoundError(f"Message {message_id} not found")
        return updated

    def delete_message(self, message_id: str, user_id: str) -> bool:
        """Permanently remove a message."""
        with self._write(f"delete message {message_id}") as conn:
            cur = conn.execute(
                "DELETE FROM messages WHERE id = ? AND user_id = ?",
                (message_id, user_id),
            )
        return cur.rowcount > 0

    def list_messages(
        self,
        user_id: str,
        folder: str,
        *,
        offset: int,
        limit: int,
        unread_only: bool = False,
        starred_only: bool = False,
    ) -> tuple[list[Message], int]:
        """Return one page of messages for a folder, newest first."""
        clauses = ["user_id = ?", "folder = ?"]
        params: list[Any] = [user_id, folder]
        if unread_only:
            clauses.append("is_read = 0")
        if starred_only:
            clauses.append("starred = 1")
        where = " AND ".join(clauses)

        total = int(
            self._connection.execute(
                f"SELECT COUNT(*) FROM messages WHERE {where}", params
            ).fetchone()[0]
        )
        cur = self._connection.execute(
            f"{_MESSAGE_SELECT} WHERE {where} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_row_to_message(row) for row in cur.fetchall()], total

    def list_starred(
        self, user_id: str, *, offset: int, limit: int, unread_only: bool = False
    ) -> tuple[list[Message], int]:
        """Return starred messages outside spam and trash, newest first."""
        where = "user_id = ? AND starred = 1 AND folder NOT IN (?, ?)"
        params: list[Any] = [user_id, SPAM, TRASH]
        if unread_only:
            where += " AND is_read = 0"
        total = int(
            self._connection.execute(
                f"SELECT COUNT(*) FROM messages WHERE {where}", params
            ).fetchone()[0]
        )
        cur = self._connection.execute(
            f"{_MESSAGE_SELECT} WHERE {where} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_row_to_message(row) for row in cur.fetchall()], total

    def list_thread(self, user_id: str, thread_id: str) -> list[Message]:
        """Return a thread's messages, oldest first for conversation flow."""
        cur = self._connection.execute(
            f"{_MESSAGE_SELECT} WHERE user_id = ? AND thread_id = ? ORDER BY created_at, id",
            (user_id, thread_id),
        )
        return [_row_to_message(row) for row in cur.fetchall()]

    def thread_message_ids(self, user_id: str, thread_id: str) -> list[str]:
        """Return RFC message-ids for every message in a thread."""
        cur = self._connection.execute(
            "SELECT message_id FROM messages WHERE user_id = ? AND thread_id = ?",
            (user_id, thread_id),
        )
        return [row["message_id"] for row in cur.fetchall() if row["message_id"]]

    def count_by_folder(self, user_id: str) -> dict[str, FolderCount]:
        """Group the user's messages by folder and count unread ones."""
        cur = self._connection.execute(
            """
            SELECT
                folder,
                COUNT(*) AS total,
                SUM(CASE WHEN is_read = 0 THEN 1 ELSE 0 END) AS unread
            FROM messages
            WHERE user_id = ?
            GROUP BY folder
            """,
            (user_id,),
        )
        return {
            row["folder"]: FolderCount(total=int(row["total"]), unread=int(row["unread"] or 0))
            for row in cur.fetchall()
        }

    def count_starred(self, user_id: str) -> FolderCount:
        """Count starred messages outside spam and trash."""
        row = self._connection.execute(
            """
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN is_read = 0 THEN 1 ELSE 0 END) AS unread
            FROM messages
            WHERE user_id = ? AND starred = 1 AND folder NOT IN (?, ?)
            """,
            (user_id, SPAM, TRASH),
        ).fetchone()
        return FolderCount(total=int(row["total"]), unread=int(row["unread"] or 0))

    # Drafts ------------------------------------------------------------------
    def persist_draft(self, draft: Draft) -> Draft:
        """Insert or update a draft and return it."""
        LOGGER.debug("Persisting draft %s", draft.id)
        content = draft.content
        with self._write(f"persist draft {draft.id}") as conn:
            conn.execute(
                """
                INSERT INTO drafts (
                    id,
                    user_id,
                    in_reply_to_id,
                    to_recipients,
                    cc_recipients,
                    bcc_recipients,
                    subject,
                    body_html,
                    body_text,
                    attachments,
                    created_at,
                    updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    in_reply_to_id=excluded.in_reply_to_id,
                    to_recipients=excluded.to_recipients,
                    cc_recipients=excluded.cc_recipients,
                    bcc_recipients=excluded.bcc_recipients,
                    subject=excluded.subject,
                    body_html=excluded.body_html,
                    body_text=excluded.body_text,
                    attachments=excluded.attachments,
                    updated_at=excluded.updated_at
                WHERE drafts.user_id = excluded.user_id
                """,
                (
                    draft.id,
                    draft.user_id,
                    content.in_reply_to_id or None,
                    ",".join(content.to),
                    ",".join(content.cc),
                    ",".join(content.bcc),
                    content.subject,
                    content.body_html,
                    content.body_text,
                    _dump_attachments(content.attachments),
                    serialize_datetime(draft.created_at),
                    serialize_datetime(draft.updated_at),
                ),
            )
        return draft

    def fetch_draft(self, draft_id: str) -> Draft | None:
        """Retrieve a stored draft."""
        cur = self._connection.execute(f"{_DRAFT_SELECT} WHERE id = ?", (draft_id,))
        row = cur.fetchone()
        return _row_to_draft(row) if row is not None else None

    def delete_draft(self, draft_id: str, user_id: str) -> bool:
        """Delete the stored draft for the given identifiers."""
        with self._write(f"delete draft {draft_id}") as conn:
            cur = conn.execute(
                "DELETE FROM drafts WHERE id = ? AND user_id = ?",
                (draft_id, user_id),
            )
        return cur.rowcount > 0

    def find_drafts_replying_to(
        self, user_id: str, message_ids: Sequence[str]
    ) -> list[Draft]:
        """Return drafts replying into ``message_ids``, most recently edited first."""
        unique_ids = list(dict.fromkeys(message_ids))
        drafts: list[Draft] = []
        for start in range(0, len(unique_ids), _IN_CHUNK_SIZE):
            chunk = unique_ids[start : start + _IN_CHUNK_SIZE]
            placeholders = ",".join("?" for _ in chunk)
            cur = self._connection.execute(
                f"{_DRAFT_SELECT} WHERE user_id = ? AND in_reply_to_id IN ({placeholders})",
                (user_id, *chunk),
            )
            drafts.extend(_row_to_draft(row) for row in cur.fetchall())
        drafts.sort(key=lambda draft: (draft.updated_at, draft.id), reverse=True)
        return drafts

    def list_drafts(
        self, user_id: str, *, offset: int, limit: int
    ) -> tuple[list[Draft], int]:
        """Return one page of drafts, most recently edited first."""
        total = self.count_drafts(user_id)
        cur = self._connection.execute(
            f"{_DRAFT_SELECT} WHERE user_id = ? ORDER BY updated_at DESC, id DESC LIMIT ? OFFSET ?",
            (user_id, limit, offset),
        )
        return [_row_to_draft(row) for row in cur.fetchall()], total

    def count_drafts(self, user_id: str) -> int:
        """Return the number of drafts owned by ``user_id``."""
        cur = self._connection.execute(
            "SELECT COUNT(*) FROM drafts WHERE user_id = ?", (user_id,)
        )
        return int(cur.fetchone()[0])

    # Folders -----------------------------------------------------------------
    def persist_folder(self, folder: Folder) -> Folder:
        """Insert or update a custom folder."""
        with self._write(f"persist folder {folder.id}") as conn:
            conn.execute(
                """
                INSERT INTO folders (
                    id, user_id, org_id, name, color, description, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    color=excluded.color,
                    description=excluded.description,
                    updated_at=excluded.updated_at
                """,
                (
                    folder.id,
                    folder.user_id,
                    folder.org_id,
                    folder.name,
                    folder.color,
                    folder.description,
                    serialize_datetime(folder.created_at),
                    serialize_datetime(folder.updated_at),
                ),
            )
        return folder

    def fetch_folder(self, folder_id: str) -> Folder | None:
        """Retrieve a custom folder."""
        row = self._connection.execute(
            "SELECT * FROM folders WHERE id = ?", (folder_id,)
        ).fetchone()
        return _row_to_folder(row) if row is not None else None

    def list_folders(self, user_id: str) -> list[Folder]:
        """Return the user's custom folders in creation order."""
        cur = self._connection.execute(
            "SELECT * FROM folders WHERE user_id = ? ORDER BY created_at, id",
            (user_id,),
        )
        return [_row_to_folder(row) for row in cur.fetchall()]

    def delete_folder(
        self, folder_id: str, user_id: str, *, reassign_to: str
    ) -> list[str]:
        """Delete a custom folder, moving its messages to ``reassign_to``."""
        with self._write(f"delete folder {folder_id}") as conn:
            thread_rows = conn.execute(
                "SELECT DISTINCT thread_id FROM messages WHERE user_id = ? AND folder = ?",
                (user_id, folder_id),
            ).fetchall()
            conn.execute(
                "UPDATE messages SET folder = ? WHERE user_id = ? AND folder = ?",
                (reassign_to, user_id, folder_id),
            )
            cur = conn.execute(
                "DELETE FROM folders WHERE id = ? AND user_id = ?",
                (folder_id, user_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Folder {folder_id} not found")
        return [row["thread_id"] for row in thread_rows]

    # Labels ------------------------------------------------------------------
    def persist_label(self, label: Label) -> Label:
        """Insert or update a label."""
        with self._write(f"persist label {label.id}") as conn:
            self._upsert_label(conn, label)
        return label

    def fetch_label(self, label_id: str) -> Label | None:
        """Retrieve a label."""
        row = self._connection.execute(
            "SELECT * FROM labels WHERE id = ?", (label_id,)
        ).fetchone()
        return _row_to_label(row) if row is not None else None

    def list_labels(self, user_id: str) -> list[Label]:
        """Return the user's labels in creation order."""
        cur = self._connection.execute(
            "SELECT * FROM labels WHERE user_id = ? ORDER BY created_at, id",
            (user_id,),
        )
        return [_row_to_label(row) for row in cur.fetchall()]

    def rename_label(self, label: Label, old_name: str) -> list[str]:
        """Store a renamed label and rewrite its name on every message."""
        with self._write(f"rename label {label.id}") as conn:
            self._upsert_label(conn, label)
            if label.name == old_name:
                return []
            return self._rewrite_labels(
                conn,
                label.user_id,
                old_name,
                lambda labels: tuple(
                    sorted({label.name if name == old_name else name for name in labels})
                ),
            )

    def delete_label(self, label_id: str, user_id: str) -> list[str]:
        """Delete a label and pull it out of every message's label set."""
        with self._write(f"delete label {label_id}") as conn:
            row = conn.execute(
                "SELECT name FROM labels WHERE id = ? AND user_id = ?",
                (label_id, user_id),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Label {label_id} not found")
            name = row["name"]
            threads = self._rewrite_labels(
                conn,
                user_id,
                name,
                lambda labels: tuple(value for value in labels if value != name),
            )
            conn.execute("DELETE FROM labels WHERE id = ?", (label_id,))
        return threads

    def ping(self) -> bool:
        """Return ``True`` while the connection still answers queries."""
        try:
            self._connection.execute("SELECT 1")
        except sqlite3.Error:
            return False
        return True

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()

    # Internal helpers --------------------------------------------------------
    @contextmanager
    def _write(self, action: str) -> Iterator[sqlite3.Connection]:
        """Run a write transaction, translating SQLite failures."""
        try:
            with self._connection:
                yield self._connection
        except sqlite3.IntegrityError as exc:
            LOGGER.warning("Integrity error during %s: %s", action, exc)
            raise ConflictError(f"Conflicting data for {action}") from exc
        except sqlite3.Error as exc:
            LOGGER.error("Store write failed during %s: %s", action, exc, exc_info=True)
            raise StoreWriteError(f"Store write failed: {action}") from exc

    def _upsert_label(self, conn: sqlite3.Connection, label: Label) -> None:
        conn.execute(
            """
            INSERT INTO labels (
                id, user_id, org_id, name, color, description, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name=excluded.name,
                color=excluded.color,
                description=excluded.description,
                updated_at=excluded.updated_at
            """,
            (
                label.id,
                label.user_id,
                label.org_id,
                label.name,
                label.color,
                label.description,
                serialize_datetime(label.created_at),
                serialize_datetime(label.updated_at),
            ),
        )

    def _rewrite_labels(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        name: str,
        rewrite: Any,
    ) -> list[str]:
        """Apply ``rewrite`` to the label set of every message carrying ``name``."""
        pattern = f"%{json.dumps(name)}%"
        rows = conn.execute(
            "SELECT id, thread_id, labels FROM messages WHERE user_id = ? AND labels LIKE ?",
            (user_id, pattern),
        ).fetchall()
        threads: list[str] = []
        for row in rows:
            labels = _load_labels(row["labels"])
            if name not in labels:
                continue
            conn.execute(
                "UPDATE messages SET labels = ? WHERE id = ?",
                (_dump_labels(rewrite(labels)), row["id"]),
            )
            if row["thread_id"] not in threads:
                threads.append(row["thread_id"])
        return threads

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._connection:
                self._connection.executescript(script)

    def _ensure_indexes(self) -> None:
        """Create supporting indexes for the hot read paths."""
        index_statements = (
            "CREATE INDEX IF NOT EXISTS idx_messages_user_folder_created ON messages(user_id, folder, created_at DESC)",
            "CREATE INDEX IF NOT EXISTS idx_messages_user_thread ON messages(user_id, thread_id)",
            "CREATE INDEX IF NOT EXISTS idx_drafts_user_reply ON drafts(user_id, in_reply_to_id)",
            "CREATE INDEX IF NOT EXISTS idx_drafts_user_updated ON drafts(user_id, updated_at DESC)",
        )
        with self._connection:
            for statement in index_statements:
                self._connection.execute(statement)


def _to_column_value(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def _split_recipients(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(
        part for part in (segment.strip() for segment in value.split(",")) if part
    )


def _dump_labels(labels: Sequence[str]) -> str:
    return json.dumps(sorted(set(labels)))


def _load_labels(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(json.loads(raw))


def _dump_attachments(attachments: Sequence[AttachmentRef]) -> str:
    return json.dumps(
        [
            {
                "id": item.id,
                "filename": item.filename,
                "content_type": item.content_type,
                "size": item.size,
            }
            for item in attachments
        ]
    )


def _load_attachments(raw: str | None) -> tuple[AttachmentRef, ...]:
    if not raw:
        return ()
    return tuple(
        AttachmentRef(
            id=item["id"],
            filename=item.get("filename"),
            content_type=item.get("content_type"),
            size=item.get("size"),
        )
        for item in json.loads(raw)
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    created_at = parse_datetime(row["created_at"])
    assert created_at is not None
    return Message(
        id=row["id"],
        user_id=row["user_id"],
        org_id=row["org_id"],
        thread_id=row["thread_id"],
        message_id=row["message_id"],
        folder=row["folder"],
        read=bool(row["is_read"]),
        starred=bool(row["starred"]),
        labels=_load_labels(row["labels"]),
        sender=row["sender"],
        to=_split_recipients(row["to_recipients"]),
        cc=_split_recipients(row["cc_recipients"]),
        bcc=_split_recipients(row["bcc_recipients"]),
        subject=row["subject"],
        body_text=row["body_text"],
        body_html=row["body_html"],
        attachments=_load_attachments(row["attachments"]),
        created_at=created_at,
    )


def _row_to_draft(row: sqlite3.Row) -> Draft:
    created_at = parse_datetime(row["created_at"])
    updated_at = parse_datetime(row["updated_at"])
    assert created_at is not None and updated_at is not None
    return Draft(
        id=row["id"],
        user_id=row["user_id"],
        content=DraftContent(
            to=_split_recipients(row["to_recipients"]),
            cc=_split_recipients(row["cc_recipients"]),
            bcc=_split_recipients(row["bcc_recipients"]),
            subject=row["subject"],
            body_html=row["body_html"],
            body_text=row["body_text"],
            in_reply_to_id=row["in_reply_to_id"],
            attachments=_load_attachments(row["attachments"]),
        ),
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_folder(row: sqlite3.Row) -> Folder:
    created_at = parse_datetime(row["created_at"])
    updated_at = parse_datetime(row["updated_at"])
    assert created_at is not None and updated_at is not None
    return Folder(
        id=row["id"],
        user_id=row["user_id"],
        org_id=row["org_id"],
        name=row["name"],
        color=row["color"],
        description=row["description"],
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_label(row: sqlite3.Row) -> Label:
    created_at = parse_datetime(row["created_at"])
    updated_at = parse_datetime(row["updated_at"])
    assert created_at is not None and updated_at is not None
    return Label(
        id=row["id"],
        user_id=row["user_id"],
        org_id=row["org_id"],
        name=row["name"],
        color=row["color"],
        description=row["description"],
        created_at=created_at,
        updated_at=updated_at,
    )


__all__ = ["SqliteMailboxStore"]
