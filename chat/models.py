"""
Domain models for the chat sync engine.

Messages live in the realtime tree at ``messages/{conversation_id}/{message_id}``
as plain mappings; these dataclasses are the typed view of those records.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


MESSAGES_ROOT = "messages"
TYPING_ROOT = "typing"
PRESENCE_ROOT = "presence"


def now_ms() -> int:
    return int(time.time() * 1000)


class SenderRole(str, Enum):
    VISITOR = "visitor"
    OPERATOR = "operator"

    @classmethod
    def parse(cls, value: Any) -> "SenderRole":
        """Read a stored sender, accepting the older ``user``/``admin`` spelling."""
        aliases = {"user": cls.VISITOR, "admin": cls.OPERATOR}
        if isinstance(value, cls):
            return value
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            return cls.VISITOR


@dataclass(frozen=True)
class Message:
    """One chat message as stored under a conversation."""
    message_id: str
    conversation_id: str
    name: str
    email: str
    body: str
    created_at: int
    sender: SenderRole
    read: bool = False

    @property
    def sort_key(self):
        # Push ids sort by insertion, so they break timestamp ties.
        return (self.created_at, self.message_id)

    @property
    def is_unread_visitor_message(self) -> bool:
        return self.sender == SenderRole.VISITOR and not self.read

    @classmethod
    def from_record(cls, conversation_id: str, message_id: str, record: Dict[str, Any]) -> "Message":
        try:
            created_at = int(record.get("createdAt") or 0)
        except (TypeError, ValueError):
            created_at = 0
        return cls(
            message_id=message_id,
            conversation_id=record.get("userId") or conversation_id,
            name=record.get("name") or "",
            email=record.get("email") or "",
            body=record.get("message") or "",
            created_at=created_at,
            sender=SenderRole.parse(record.get("sender")),
            read=record.get("read") is True,
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "userId": self.conversation_id,
            "name": self.name,
            "email": self.email,
            "message": self.body,
            "createdAt": self.created_at,
            "sender": self.sender.value,
            "read": self.read,
        }


@dataclass
class OutgoingMessage:
    """A message about to be appended; the store assigns its id."""
    name: str
    email: str
    body: str
    sender: SenderRole
    created_at: int = field(default_factory=now_ms)
    read: bool = False

    def to_record(self, conversation_id: str) -> Dict[str, Any]:
        return {
            "userId": conversation_id,
            "name": self.name,
            "email": self.email,
            "message": self.body,
            "createdAt": self.created_at,
            "sender": self.sender.value,
            "read": self.read,
        }


@dataclass(frozen=True)
class VisitorIdentity:
    conversation_id: str
    name: str
    email: str
    submitted: bool = False


@dataclass
class ConversationView:
    """Ordered messages of one conversation plus its display identity."""
    conversation_id: str
    name: str = "Anonymous"
    email: str = "guest"
    messages: List[Message] = field(default_factory=list)

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    @property
    def last_active_at(self) -> int:
        last = self.last_message
        return last.created_at if last else 0

    def find(self, message_id: str) -> Optional[Message]:
        for message in self.messages:
            if message.message_id == message_id:
                return message
        return None


@dataclass(frozen=True)
class RoleFlags:
    """Per-role boolean flags of one conversation (typing or online)."""
    visitor: bool = False
    operator: bool = False

    @classmethod
    def from_value(cls, value: Any) -> "RoleFlags":
        if not isinstance(value, dict):
            return cls()
        return cls(
            visitor=value.get(SenderRole.VISITOR.value) is True,
            operator=value.get(SenderRole.OPERATOR.value) is True,
        )

    def for_role(self, role: SenderRole) -> bool:
        return self.visitor if role == SenderRole.VISITOR else self.operator


def message_path(conversation_id: str, message_id: Optional[str] = None) -> str:
    if message_id is None:
        return f"{MESSAGES_ROOT}/{conversation_id}"
    return f"{MESSAGES_ROOT}/{conversation_id}/{message_id}"


def flag_path(root: str, conversation_id: str, role: SenderRole) -> str:
    return f"{root}/{conversation_id}/{role.value}"
