"""
Read-State Tracker.

Unread state lives on each visitor message as a ``read`` flag; counts are
derived from the synchronizer's current view without a round trip.
"""

import logging
from typing import Iterable, List, Optional

from .errors import StoreWriteError
from .models import Message
from .synchronizer import ConversationSynchronizer

logger = logging.getLogger(__name__)


def count_unread(messages: Iterable[Message]) -> int:
    return sum(1 for m in messages if m.is_unread_visitor_message)


def find_first_unread(messages: Iterable[Message]) -> Optional[Message]:
    for message in messages:
        if message.is_unread_visitor_message:
            return message
    return None


class ReadStateTracker:
    """Unread bookkeeping for conversations seen through a synchronizer."""

    def __init__(self, synchronizer: ConversationSynchronizer):
        self._sync = synchronizer

    def _messages(self, conversation_id: str) -> List[Message]:
        view = self._sync.latest(conversation_id)
        return view.messages if view else []

    def unread_count(self, conversation_id: str) -> int:
        return count_unread(self._messages(conversation_id))

    def has_unread(self, conversation_id: str) -> bool:
        return self.first_unread(conversation_id) is not None

    def first_unread(self, conversation_id: str) -> Optional[Message]:
        """Target for "jump to first unread"; ``None`` means nothing to do."""
        return find_first_unread(self._messages(conversation_id))

    async def mark_read(self, conversation_id: str) -> int:
        """
        Flag every unread visitor message of a conversation as read.

        Each message is its own update, not a transaction. A failed update
        is logged and left for the next time the conversation is opened.

        Returns:
            Number of updates the store acknowledged.
        """
        pending = [m for m in self._messages(conversation_id) if m.is_unread_visitor_message]
        acknowledged = 0
        for message in pending:
            try:
                await self._sync.update_message(conversation_id, message.message_id, {"read": True})
                acknowledged += 1
            except StoreWriteError as e:
                logger.warning(f"Read update for {conversation_id}/{message.message_id} failed: {e}")

        if pending:
            logger.info(
                "Conversation marked read",
                extra={
                    "conversation_id": conversation_id,
                    "requested": len(pending),
                    "acknowledged": acknowledged,
                },
            )
        return acknowledged
