"""Client side of the mailbox API: HTTP client and optimistic view state."""

from .api import MailboxApiClient
from .optimistic import OptimisticState, Ticket, ViewState
from .session import MailboxSession

__all__ = ["MailboxApiClient", "MailboxSession", "OptimisticState", "Ticket", "ViewState"]
