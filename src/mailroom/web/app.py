"""FastAPI application exposing the mailbox mutation and read API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, FastAPI, Query, Request, status as http_status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import Response

from mailroom.cache import CacheFabric
from mailroom.core import AppSettings, load_app_settings
from mailroom.core.datetime_utils import serialize_datetime
from mailroom.core.errors import (
    ConflictError,
    MailroomError,
    NotFoundError,
    StoreWriteError,
    ValidationError,
)
from mailroom.core.interfaces import EventDispatcher
from mailroom.core.models import (
    DRAFTS,
    AttachmentRef,
    AuthUser,
    BulkResult,
    Draft,
    DraftContent,
    Folder,
    FolderCount,
    Label,
    Message,
    MessageCommand,
    MoveFolder,
    SetRead,
    SetStarred,
)
from mailroom.dispatch import build_dispatcher
from mailroom.drafts import DraftThreadResolver
from mailroom.mutations import MutationCoordinator
from mailroom.projection import FolderCountsProjection, MailboxViews
from mailroom.storage import SqliteMailboxStore
from mailroom.storage.connection_pool import ConnectionPool

from .auth import current_user

LOGGER = logging.getLogger(__name__)


# Request bodies --------------------------------------------------------------
class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class MessagePatch(_ApiModel):
    """Restricted patch accepted by ``PATCH /messages/{id}``."""

    read: bool | None = None
    starred: bool | None = None
    folder: str | None = None

    def to_commands(self) -> list[MessageCommand]:
        commands: list[MessageCommand] = []
        if self.read is not None:
            commands.append(SetRead(self.read))
        if self.starred is not None:
            commands.append(SetStarred(self.starred))
        if self.folder is not None:
            commands.append(MoveFolder(self.folder))
        return commands


class BulkUpdateRequest(_ApiModel):
    action: str
    message_ids: list[str] = Field(alias="messageIds", min_length=1)
    current_folder: str | None = Field(default=None, alias="currentFolder")


class AttachmentPayload(_ApiModel):
    id: str
    filename: str | None = None
    content_type: str | None = Field(default=None, alias="contentType")
    size: int | None = Field(default=None, ge=0)


class DraftPayload(_ApiModel):
    """Composer fields; every field is optional so autosave can send a patch."""

    to: list[str] | None = None
    cc: list[str] | None = None
    bcc: list[str] | None = None
    subject: str | None = None
    body_html: str | None = Field(default=None, alias="bodyHtml")
    body_text: str | None = Field(default=None, alias="bodyText")
    in_reply_to_id: str | None = Field(default=None, alias="inReplyToId")
    attachments: list[AttachmentPayload] | None = None

    def to_changes(self) -> dict[str, Any]:
        changes: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if name in ("to", "cc", "bcc"):
                changes[name] = tuple(value or ())
            elif name in ("subject", "body_html"):
                changes[name] = value or ""
            elif name == "attachments":
                changes[name] = tuple(
                    AttachmentRef(
                        id=item.id,
                        filename=item.filename,
                        content_type=item.content_type,
                        size=item.size,
                    )
                    for item in value or ()
                )
            else:
                changes[name] = value or None
        return changes


class FolderPayload(_ApiModel):
    name: str | None = None
    color: str | None = None
    description: str | None = None


# Wiring ----------------------------------------------------------------------
@dataclass(slots=True)
class MailboxServices:
    """Per-request bundle of services bound to one pooled store connection."""

    store: SqliteMailboxStore
    coordinator: MutationCoordinator
    views: MailboxViews
    counts: FolderCountsProjection
    drafts: DraftThreadResolver


def create_app(
    settings: AppSettings | None = None,
    *,
    cache: CacheFabric | None = None,
    dispatcher: EventDispatcher | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = settings or load_app_settings()

    connection_pool = ConnectionPool(app_settings.storage)
    cache_fabric = cache or CacheFabric(app_settings.cache)
    # an injected dispatcher belongs to the caller; a built one is closed here
    owned_dispatcher = build_dispatcher(app_settings.dispatch) if dispatcher is None else None
    event_dispatcher = dispatcher if dispatcher is not None else owned_dispatcher
    max_page_size = app_settings.api.max_page_size

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        connection_pool.close()
        LOGGER.info("Connection pool closed")
        close_dispatcher = getattr(owned_dispatcher, "close", None)
        if callable(close_dispatcher):
            close_dispatcher()

    app = FastAPI(title="Mailroom", lifespan=lifespan)
    app.state.settings = app_settings
    app.state.cache = cache_fabric
    app.state.pool = connection_pool
    app.state.dispatcher = event_dispatcher

    def get_services() -> Iterator[MailboxServices]:
        with connection_pool.acquire(timeout=10.0) as store:
            yield MailboxServices(
                store=store,
                coordinator=MutationCoordinator(store, cache_fabric, event_dispatcher),
                views=MailboxViews(store, cache_fabric, app_settings.api),
                counts=FolderCountsProjection(store, cache_fabric),
                drafts=DraftThreadResolver(store),
            )

    _register_error_handlers(app)

    # Messages ----------------------------------------------------------------
    @app.get("/messages/counts")
    async def folder_counts(
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, dict[str, int]]:
        """Return ``{folder: {total, unread}}`` for the caller."""
        counts = services.counts.get_folder_counts(user.id)
        return {folder: _serialize_count(count) for folder, count in counts.items()}

    @app.get("/messages")
    async def list_messages(
        folder: str = "inbox",
        page: int = Query(default=1, ge=1),
        limit: int | None = Query(default=None, ge=1, le=max_page_size),
        unread: bool = False,
        starred: bool = False,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        if folder == DRAFTS:
            draft_page = services.views.list_drafts(user.id, page=page, limit=limit)
            return {
                "folder": folder,
                "drafts": [_serialize_draft(draft) for draft in draft_page.drafts],
                "total": draft_page.total,
                "page": draft_page.page,
                "limit": draft_page.limit,
            }
        message_page = services.views.list_messages(
            user.id,
            folder,
            page=page,
            limit=limit,
            unread_only=unread,
            starred_only=starred,
        )
        return {
            "folder": folder,
            "messages": [_serialize_message(message) for message in message_page.messages],
            "total": message_page.total,
            "page": message_page.page,
            "limit": message_page.limit,
        }

    @app.patch("/messages/{message_id}")
    async def patch_message(
        message_id: str,
        patch: MessagePatch,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        updated = services.coordinator.apply_single(user, message_id, patch.to_commands())
        return _serialize_message(updated)

    @app.delete("/messages/{message_id}")
    async def delete_message_forever(
        message_id: str,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> Response:
        services.coordinator.delete_forever(user, message_id)
        return Response(status_code=http_status.HTTP_204_NO_CONTENT)

    @app.post("/bulk-update")
    async def bulk_update(
        body: BulkUpdateRequest,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        """Apply one action to many messages; partial success is reported per id."""
        result = services.coordinator.apply_bulk(
            user, body.action, body.message_ids, body.current_folder
        )
        return _serialize_bulk_result(result)

    @app.get("/threads/{thread_id}")
    async def thread_detail(
        thread_id: str,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        messages = services.views.get_thread(user.id, thread_id)
        if not messages:
            raise NotFoundError(f"Thread {thread_id} not found")
        return {
            "threadId": thread_id,
            "messages": [_serialize_message(message) for message in messages],
        }

    # Drafts ------------------------------------------------------------------
    @app.get("/drafts/by-thread/{thread_id}")
    async def draft_for_thread(
        thread_id: str,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        """Return the draft continuing ``thread_id`` so the composer can PATCH it."""
        draft = services.drafts.find_draft_for_thread(user.id, thread_id)
        if draft is None:
            raise NotFoundError(f"No draft for thread {thread_id}")
        return _serialize_draft(draft)

    @app.post("/drafts", status_code=http_status.HTTP_201_CREATED)
    async def create_draft(
        body: DraftPayload,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        draft = services.coordinator.create_draft(user, DraftContent(**body.to_changes()))
        return _serialize_draft(draft)

    @app.patch("/drafts/{draft_id}")
    async def update_draft(
        draft_id: str,
        body: DraftPayload,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        draft = services.coordinator.update_draft(user, draft_id, body.to_changes())
        return _serialize_draft(draft)

    @app.delete("/drafts/{draft_id}")
    async def delete_draft(
        draft_id: str,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> Response:
        services.coordinator.delete_draft(user, draft_id)
        return Response(status_code=http_status.HTTP_204_NO_CONTENT)

    # Folders -----------------------------------------------------------------
    @app.get("/folders")
    async def list_folders(
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> list[dict[str, Any]]:
        return [_serialize_named(folder) for folder in services.store.list_folders(user.id)]

    @app.post("/folders", status_code=http_status.HTTP_201_CREATED)
    async def create_folder(
        body: FolderPayload,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        folder = services.coordinator.create_folder(
            user, body.name or "", color=body.color, description=body.description or ""
        )
        return _serialize_named(folder)

    @app.patch("/folders/{folder_id}")
    async def update_folder(
        folder_id: str,
        body: FolderPayload,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        folder = services.coordinator.update_folder(
            user,
            folder_id,
            name=body.name,
            color=body.color,
            description=body.description,
        )
        return _serialize_named(folder)

    @app.delete("/folders/{folder_id}")
    async def delete_folder(
        folder_id: str,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> Response:
        services.coordinator.delete_folder(user, folder_id)
        return Response(status_code=http_status.HTTP_204_NO_CONTENT)

    # Labels ------------------------------------------------------------------
    @app.get("/labels")
    async def list_labels(
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> list[dict[str, Any]]:
        return [_serialize_named(label) for label in services.store.list_labels(user.id)]

    @app.post("/labels", status_code=http_status.HTTP_201_CREATED)
    async def create_label(
        body: FolderPayload,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        label = services.coordinator.create_label(
            user, body.name or "", color=body.color, description=body.description or ""
        )
        return _serialize_named(label)

    @app.patch("/labels/{label_id}")
    async def update_label(
        label_id: str,
        body: FolderPayload,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> dict[str, Any]:
        label = services.coordinator.update_label(
            user,
            label_id,
            name=body.name,
            color=body.color,
            description=body.description,
        )
        return _serialize_named(label)

    @app.delete("/labels/{label_id}")
    async def delete_label(
        label_id: str,
        user: AuthUser = Depends(current_user),  # noqa: B008
        services: MailboxServices = Depends(get_services),  # noqa: B008
    ) -> Response:
        services.coordinator.delete_label(user, label_id)
        return Response(status_code=http_status.HTTP_204_NO_CONTENT)

    return app


def _register_error_handlers(app: FastAPI) -> None:
    """Map domain errors onto HTTP responses with an ``{"error": ...}`` body."""

    def handler(status_code: int) -> Any:
        async def _handle(_: Request, exc: Exception) -> JSONResponse:
            if status_code >= 500:
                LOGGER.error("Request failed: %s", exc)
            return JSONResponse(status_code=status_code, content={"error": str(exc)})

        return _handle

    app.add_exception_handler(ConflictError, handler(http_status.HTTP_409_CONFLICT))
    app.add_exception_handler(ValidationError, handler(http_status.HTTP_400_BAD_REQUEST))
    app.add_exception_handler(NotFoundError, handler(http_status.HTTP_404_NOT_FOUND))
    app.add_exception_handler(
        StoreWriteError, handler(http_status.HTTP_503_SERVICE_UNAVAILABLE)
    )
    app.add_exception_handler(
        MailroomError, handler(http_status.HTTP_500_INTERNAL_SERVER_ERROR)
    )


# Serialisers -----------------------------------------------------------------
def _serialize_count(count: FolderCount) -> dict[str, int]:
    return {"total": count.total, "unread": count.unread}


def _serialize_attachment(attachment: AttachmentRef) -> dict[str, Any]:
    return {
        "id": attachment.id,
        "filename": attachment.filename,
        "contentType": attachment.content_type,
        "size": attachment.size,
    }


def _serialize_message(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "threadId": message.thread_id,
        "messageId": message.message_id,
        "folder": message.folder,
        "read": message.read,
        "starred": message.starred,
        "labels": list(message.labels),
        "from": message.sender,
        "to": list(message.to),
        "cc": list(message.cc),
        "bcc": list(message.bcc),
        "subject": message.subject,
        "bodyText": message.body_text,
        "bodyHtml": message.body_html,
        "attachments": [_serialize_attachment(item) for item in message.attachments],
        "createdAt": serialize_datetime(message.created_at),
    }


def _serialize_draft(draft: Draft) -> dict[str, Any]:
    content = draft.content
    return {
        "id": draft.id,
        "to": list(content.to),
        "cc": list(content.cc),
        "bcc": list(content.bcc),
        "subject": content.subject,
        "bodyHtml": content.body_html,
        "bodyText": content.body_text,
        "inReplyToId": content.in_reply_to_id,
        "attachments": [_serialize_attachment(item) for item in content.attachments],
        "createdAt": serialize_datetime(draft.created_at),
        "updatedAt": serialize_datetime(draft.updated_at),
    }


def _serialize_named(item: Folder | Label) -> dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "color": item.color,
        "description": item.description,
        "createdAt": serialize_datetime(item.created_at),
        "updatedAt": serialize_datetime(item.updated_at),
    }


def _serialize_bulk_result(result: BulkResult) -> dict[str, Any]:
    return {
        "updated": list(result.updated),
        "failed": [
            {"id": failure.id, "reason": failure.reason, "code": failure.code}
            for failure in result.failed
        ],
    }


__all__ = ["MailboxServices", "create_app"]
