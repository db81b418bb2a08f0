"""Authenticated caller extraction for the mailbox API.

Identity is issued upstream; the gateway in front of this service forwards
the verified user and organisation ids as request headers.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from ..core.models import AuthUser

USER_HEADER = "X-User-Id"
ORG_HEADER = "X-Org-Id"


def current_user(request: Request) -> AuthUser:
    """Return the caller or reject the request with 401."""
    user_id = request.headers.get(USER_HEADER, "").strip()
    org_id = request.headers.get(ORG_HEADER, "").strip()
    if not user_id or not org_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    return AuthUser(id=user_id, org_id=org_id)


__all__ = ["ORG_HEADER", "USER_HEADER", "current_user"]
