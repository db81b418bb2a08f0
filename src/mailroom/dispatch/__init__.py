"""Outbound mutation event delivery."""

from .background import BackgroundEventDispatcher
from .http import HttpEventDispatcher, LoggingEventDispatcher, build_dispatcher

__all__ = [
    "BackgroundEventDispatcher",
    "HttpEventDispatcher",
    "LoggingEventDispatcher",
    "build_dispatcher",
]
