"""HTTP surface of the mailbox API."""

from .app import create_app

__all__ = ["create_app"]
