"""Persistence adapters for the mailbox store."""

from .sqlite import SqliteMailboxStore

__all__ = ["SqliteMailboxStore"]
