"""
Trigger point for user-visible alerts.

Delivery (browser notifications, push) happens elsewhere; the engine only
emits an event when a message lands somewhere nobody is looking.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List

from .models import Message, SenderRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewMessageEvent:
    conversation_id: str
    message: Message
    audience: SenderRole  # who should be alerted


NotificationListener = Callable[[NewMessageEvent], None]


class NotificationHook:
    """Fan-out of new-message events; a failing listener never reaches the sync layer."""

    def __init__(self):
        self._listeners: List[NotificationListener] = []

    def register(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def unregister(self, listener: NotificationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: NewMessageEvent) -> None:
        logger.debug(f"New message for {event.audience.value} in {event.conversation_id}")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Notification listener failed")
