"""
Conversation Synchronizer.

Keeps an in-memory ordered view of one conversation (visitor widget) or
of every conversation (operator inbox) in step with the realtime store.
Every store notification carries the full snapshot of the watched path,
so each delivery replaces the previous view outright.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from realtime.base import RealtimeStore, Unsubscribe

from .errors import StoreWriteError
from .models import (
    MESSAGES_ROOT,
    ConversationView,
    Message,
    OutgoingMessage,
    SenderRole,
    message_path,
)

logger = logging.getLogger(__name__)

ViewCallback = Callable[[ConversationView], None]
InboxCallback = Callable[[Dict[str, ConversationView]], None]


class Subscription:
    """Handle for a live store listener; ``close()`` may be called any number of times."""

    def __init__(self, unsubscribe: Unsubscribe, label: str):
        self._unsubscribe: Optional[Unsubscribe] = unsubscribe
        self.label = label

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def close(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
            logger.debug(f"Subscription closed: {self.label}")


def order_messages(conversation_id: str, records: Dict[str, Any]) -> List[Message]:
    """Parse raw records and sort them ascending by creation time."""
    messages = [
        Message.from_record(conversation_id, message_id, record)
        for message_id, record in records.items()
        if isinstance(record, dict)
    ]
    messages.sort(key=lambda m: m.sort_key)
    return messages


def build_view(conversation_id: str, records: Dict[str, Any]) -> ConversationView:
    view = ConversationView(conversation_id=conversation_id, messages=order_messages(conversation_id, records))

    # Display identity comes from the first record encountered, preferring
    # one the visitor wrote so operator replies never rename the thread.
    first = None
    for record in records.values():
        if not isinstance(record, dict):
            continue
        if first is None:
            first = record
        if SenderRole.parse(record.get("sender")) == SenderRole.VISITOR:
            first = record
            break
    if first is not None:
        view.name = first.get("name") or "Anonymous"
        view.email = first.get("email") or "guest"
    return view


def group_conversations(tree: Dict[str, Any]) -> Dict[str, ConversationView]:
    """Flatten ``{conversation_id: {message_id: record}}`` into ordered views."""
    return {
        conversation_id: build_view(conversation_id, records)
        for conversation_id, records in tree.items()
        if isinstance(records, dict)
    }


class ConversationSynchronizer:
    """Subscribes to the message log and exposes ordered conversation views."""

    def __init__(self, store: RealtimeStore):
        self._store = store
        self._views: Dict[str, ConversationView] = {}
        self._subscriptions: List[Subscription] = []

    # ── Subscriptions ─────────────────────────────────────────────

    def subscribe_conversation(self, conversation_id: str, callback: ViewCallback) -> Subscription:
        """Watch a single conversation (visitor widget mode)."""

        def on_snapshot(snapshot) -> None:
            view = build_view(conversation_id, snapshot.children())
            self._views[conversation_id] = view
            callback(view)

        return self._track(
            self._store.subscribe(message_path(conversation_id), on_snapshot),
            f"conversation:{conversation_id}",
        )

    def subscribe_all(self, callback: InboxCallback) -> Subscription:
        """Watch every conversation (operator inbox mode)."""

        def on_snapshot(snapshot) -> None:
            self._views = group_conversations(snapshot.children())
            callback(dict(self._views))

        return self._track(self._store.subscribe(MESSAGES_ROOT, on_snapshot), "conversation:*")

    def _track(self, unsubscribe: Unsubscribe, label: str) -> Subscription:
        subscription = Subscription(unsubscribe, label)
        self._subscriptions = [s for s in self._subscriptions if s.active]
        self._subscriptions.append(subscription)
        return subscription

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()

    # ── Current views ─────────────────────────────────────────────

    def latest(self, conversation_id: str) -> Optional[ConversationView]:
        return self._views.get(conversation_id)

    def conversations(self) -> Dict[str, ConversationView]:
        return dict(self._views)

    # ── Writes ────────────────────────────────────────────────────

    async def append(self, conversation_id: str, message: OutgoingMessage) -> str:
        """Append a message; returns the store-assigned id once acknowledged."""
        try:
            message_id = await self._store.push(
                message_path(conversation_id), message.to_record(conversation_id)
            )
        except ConnectionError as e:
            logger.error(f"Append to {conversation_id} failed: {e}")
            raise StoreWriteError("Failed to send message.") from e

        logger.info(
            "Message appended",
            extra={
                "conversation_id": conversation_id,
                "message_id": message_id,
                "sender": message.sender.value,
                "message_length": len(message.body),
            },
        )
        return message_id

    async def update_message(self, conversation_id: str, message_id: str, partial: Dict[str, Any]) -> None:
        try:
            await self._store.update(message_path(conversation_id, message_id), partial)
        except ConnectionError as e:
            raise StoreWriteError(f"Failed to update message {message_id}.") from e

    async def delete_message(self, conversation_id: str, message_id: str) -> None:
        """Remove a single record; callers enforce operator-only access."""
        try:
            await self._store.remove(message_path(conversation_id, message_id))
        except ConnectionError as e:
            logger.error(f"Delete of {conversation_id}/{message_id} failed: {e}")
            raise StoreWriteError("Failed to delete message.") from e
        logger.info(f"Message deleted: {conversation_id}/{message_id}")

    async def read_all(self) -> Dict[str, ConversationView]:
        """One-shot read of every conversation, outside any subscription."""
        try:
            snapshot = await self._store.read_once(MESSAGES_ROOT)
        except ConnectionError as e:
            raise StoreWriteError("Failed to read conversations.") from e
        return group_conversations(snapshot.children())
