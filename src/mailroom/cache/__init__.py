"""Cache fabric: list-view and resource-tag tiers over the mailbox store."""

from .fabric import CacheFabric, counts_tag, list_key, thread_tag
from .ttl import TtlCache

__all__ = [
    "CacheFabric",
    "TtlCache",
    "counts_tag",
    "list_key",
    "thread_tag",
]
