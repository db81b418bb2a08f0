"""Error taxonomy for mailbox mutations."""

from __future__ import annotations


class MailroomError(RuntimeError):
    """Base class for all mailbox errors."""

    code = "error"


class ValidationError(MailroomError):
    """Unknown action, disallowed folder transition, or a resource the caller does not own."""

    code = "validation"


class NotFoundError(MailroomError):
    """The message, draft, folder or label no longer exists."""

    code = "not_found"


class StoreWriteError(MailroomError):
    """The store rejected or failed a write; the mutation did not happen."""

    code = "store_write"


class ConflictError(ValidationError):
    """A uniqueness rule was violated, such as a duplicate folder or label name."""


class CacheInvalidationError(MailroomError):
    """A cache tier could not be invalidated. Staleness is bounded by TTL."""

    code = "cache_invalidation"


class DispatchError(MailroomError):
    """The event dispatcher could not be notified."""

    code = "dispatch"


__all__ = [
    "CacheInvalidationError",
    "ConflictError",
    "DispatchError",
    "MailroomError",
    "NotFoundError",
    "StoreWriteError",
    "ValidationError",
]
