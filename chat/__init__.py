"""
Chat Sync Module for the portfolio support widget.

This module keeps the visitor widget and the operator inbox consistent
over the realtime store:
- Identity resolution (one conversation per visitor email)
- Ordered conversation views from full snapshots
- Read-state reconciliation and unread badges
- Debounced typing and disconnect-safe presence flags
"""

from .errors import ChatError, ChatValidationError, IdentityNotReady, StoreWriteError, Unauthorized
from .identity import IdentityResolver
from .inbox import AdminInboxController, InboxState
from .models import Message, OutgoingMessage, SenderRole, VisitorIdentity
from .presence import PresenceSignaler, TypingDebouncer
from .read_state import ReadStateTracker
from .session import SessionService
from .synchronizer import ConversationSynchronizer
from .widget import VisitorWidgetController, WidgetState

__all__ = [
    "AdminInboxController",
    "ChatError",
    "ChatValidationError",
    "ConversationSynchronizer",
    "IdentityNotReady",
    "IdentityResolver",
    "InboxState",
    "Message",
    "OutgoingMessage",
    "PresenceSignaler",
    "ReadStateTracker",
    "SenderRole",
    "SessionService",
    "StoreWriteError",
    "TypingDebouncer",
    "Unauthorized",
    "VisitorIdentity",
    "VisitorWidgetController",
    "WidgetState",
]
