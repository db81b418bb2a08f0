"""Read models: folder counts and cached list/thread views."""

from .counts import FolderCountsProjection
from .views import MailboxViews, list_query

__all__ = ["FolderCountsProjection", "MailboxViews", "list_query"]
