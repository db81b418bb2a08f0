"""Core utilities for configuration, logging, and domain types."""

from .config import AppSettings, CacheSettings, StorageSettings, load_app_settings
from .errors import (
    CacheInvalidationError,
    ConflictError,
    DispatchError,
    MailroomError,
    NotFoundError,
    StoreWriteError,
    ValidationError,
)
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "CacheInvalidationError",
    "CacheSettings",
    "ConflictError",
    "DispatchError",
    "MailroomError",
    "NotFoundError",
    "StorageSettings",
    "StoreWriteError",
    "ValidationError",
    "configure_logging",
    "load_app_settings",
]
