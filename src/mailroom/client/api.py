"""Async HTTP client for the mailbox API."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from types import TracebackType
from typing import Any

import httpx

from ..core.errors import NotFoundError, StoreWriteError, ValidationError
from ..core.models import AuthUser, BulkFailure, BulkResult, FolderCount
from ..web.auth import ORG_HEADER, USER_HEADER

LOGGER = logging.getLogger(__name__)

_VALIDATION_STATUSES = frozenset({400, 409, 422})


class MailboxApiClient:
    """Thin async wrapper over the mailbox endpoints.

    Error responses are mapped back onto the domain errors: 404 becomes
    :class:`NotFoundError`, 400/409/422 become :class:`ValidationError`, and
    anything else, transport failures included, means the mutation did not
    happen and raises :class:`StoreWriteError`.
    """

    def __init__(
        self,
        user: AuthUser,
        base_url: str = "http://localhost:8000",
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._user = user
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    async def __aenter__(self) -> MailboxApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # Messages ----------------------------------------------------------------
    async def list_messages(
        self,
        folder: str,
        *,
        page: int = 1,
        limit: int | None = None,
        unread: bool = False,
        starred: bool = False,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"folder": folder, "page": page}
        if limit is not None:
            params["limit"] = limit
        if unread:
            params["unread"] = "true"
        if starred:
            params["starred"] = "true"
        response = await self._request("GET", "/messages", params=params)
        return response.json()

    async def folder_counts(self) -> dict[str, FolderCount]:
        response = await self._request("GET", "/messages/counts")
        return {
            folder: FolderCount(total=int(value["total"]), unread=int(value["unread"]))
            for folder, value in response.json().items()
        }

    async def patch_message(
        self,
        message_id: str,
        *,
        read: bool | None = None,
        starred: bool | None = None,
        folder: str | None = None,
    ) -> dict[str, Any]:
        patch = {
            key: value
            for key, value in (("read", read), ("starred", starred), ("folder", folder))
            if value is not None
        }
        response = await self._request("PATCH", f"/messages/{message_id}", json=patch)
        return response.json()

    async def delete_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/messages/{message_id}")

    async def bulk_update(
        self, action: str, message_ids: Sequence[str], current_folder: str | None = None
    ) -> BulkResult:
        body = {
            "action": action,
            "messageIds": list(message_ids),
            "currentFolder": current_folder,
        }
        data = (await self._request("POST", "/bulk-update", json=body)).json()
        return BulkResult(
            updated=list(data.get("updated", [])),
            failed=[
                BulkFailure(
                    id=item["id"],
                    reason=item.get("reason", ""),
                    code=item.get("code", ValidationError.code),
                )
                for item in data.get("failed", [])
            ],
        )

    async def get_thread(self, thread_id: str) -> list[dict[str, Any]]:
        response = await self._request("GET", f"/threads/{thread_id}")
        return list(response.json()["messages"])

    # Drafts ------------------------------------------------------------------
    async def find_draft_for_thread(self, thread_id: str) -> dict[str, Any] | None:
        """Return the draft continuing ``thread_id``, or ``None`` if there is none."""
        try:
            response = await self._request("GET", f"/drafts/by-thread/{thread_id}")
        except NotFoundError:
            return None
        return response.json()

    async def create_draft(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        return (await self._request("POST", "/drafts", json=dict(fields))).json()

    async def update_draft(self, draft_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        return (await self._request("PATCH", f"/drafts/{draft_id}", json=dict(fields))).json()

    async def delete_draft(self, draft_id: str) -> None:
        await self._request("DELETE", f"/drafts/{draft_id}")

    # Internal helpers --------------------------------------------------------
    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {USER_HEADER: self._user.id, ORG_HEADER: self._user.org_id}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            LOGGER.warning("%s %s failed: %s", method, path, exc)
            raise StoreWriteError(f"{method} {path} failed: {exc}") from exc

        if response.is_success:
            return response
        message = _error_message(response)
        if response.status_code == 404:
            raise NotFoundError(message)
        if response.status_code in _VALIDATION_STATUSES:
            raise ValidationError(message)
        raise StoreWriteError(message)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        detail = body.get("error") or body.get("detail")
        if detail:
            return str(detail)
    return f"HTTP {response.status_code}"


__all__ = ["MailboxApiClient"]
