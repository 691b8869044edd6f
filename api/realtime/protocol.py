"""
Frame protocol for the realtime store WebSocket.

Client frames: {"id": "...", "op": "...", "path": "...", "value": ...}
Server frames:
    {"type": "ack", "id": ..., "result": ...}
    {"type": "snapshot", "id": <subscribe frame id>, "path": ..., "value": ...}
    {"type": "error", "id": ..., "data": "..."}
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from api.middleware.metrics import record_message_appended
from chat.models import MESSAGES_ROOT, PRESENCE_ROOT, TYPING_ROOT, SenderRole
from realtime.base import Snapshot, StoreUnavailable, Unsubscribe, split_path
from realtime.memory import StoreConnection

logger = logging.getLogger(__name__)

Emit = Callable[[Dict[str, Any]], None]

FLAG_ROOTS = (TYPING_ROOT, PRESENCE_ROOT)


class ProtocolError(ValueError):
    """A client frame that cannot be executed."""


def ack(frame_id: Any, result: Any = None) -> Dict[str, Any]:
    return {"type": "ack", "id": frame_id, "result": result}


def error(frame_id: Any, message: str) -> Dict[str, Any]:
    return {"type": "error", "id": frame_id, "data": message}


class StoreAccess:
    """
    Path rules for one socket.

    The operator may run any op anywhere. A visitor is confined to one
    conversation: it reads its own messages and signals, appends visitor
    messages, and writes only its own typing/presence flags. A socket
    without a conversation may read and write nothing.
    """

    def __init__(self, operator: bool = False, conversation_id: Optional[str] = None):
        self.is_operator = operator
        self.conversation_id = conversation_id

    @classmethod
    def for_operator(cls) -> "StoreAccess":
        return cls(operator=True)

    @classmethod
    def for_visitor(cls, conversation_id: str) -> "StoreAccess":
        return cls(conversation_id=conversation_id)

    @classmethod
    def anonymous(cls) -> "StoreAccess":
        return cls()

    def allows(self, op: str, parts: List[str]) -> bool:
        if self.is_operator:
            return True
        cid = self.conversation_id
        if not cid or len(parts) < 2 or parts[1] != cid:
            return False
        if op in ("subscribe", "once"):
            return parts[0] in (MESSAGES_ROOT,) + FLAG_ROOTS
        if op == "push":
            return parts == [MESSAGES_ROOT, cid]
        if op in ("set", "on_disconnect", "cancel_on_disconnect"):
            return len(parts) == 3 and parts[0] in FLAG_ROOTS and parts[2] == SenderRole.VISITOR.value
        return False


class StoreSession:
    """Executes client frames against one store connection."""

    def __init__(self, connection: StoreConnection, emit: Emit, access: Optional[StoreAccess] = None):
        self.connection = connection
        self.access = access or StoreAccess.anonymous()
        self._emit = emit
        self._subscriptions: Dict[str, Unsubscribe] = {}
        self._handlers = {
            "subscribe": self._subscribe,
            "unsubscribe": self._unsubscribe,
            "push": self._push,
            "set": self._set,
            "update": self._update,
            "remove": self._remove,
            "once": self._once,
            "on_disconnect": self._on_disconnect,
            "cancel_on_disconnect": self._cancel_on_disconnect,
        }

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def handle(self, frame: Any) -> Dict[str, Any]:
        """Run one frame and return the reply frame."""
        if not isinstance(frame, dict):
            return error(None, "Frame must be a JSON object")
        frame_id = frame.get("id")
        op = frame.get("op")
        handler = self._handlers.get(op) if isinstance(op, str) else None
        if handler is None:
            return error(frame_id, f"Unknown op: {op!r}")

        try:
            path = frame.get("path")
            if path is None:
                path = ""
            if not isinstance(path, str):
                raise ProtocolError("path must be a string")
            if op != "unsubscribe" and not self.access.allows(op, split_path(path)):
                logger.warning(f"Denied {op} on {path!r} for {self.connection.client_id}")
                raise ProtocolError("Permission denied")
            result = await handler(frame_id, path, frame.get("value"))
        except ProtocolError as e:
            return error(frame_id, str(e))
        except StoreUnavailable as e:
            logger.warning(f"Frame {frame_id} on closed connection: {e}")
            return error(frame_id, "Connection closed")
        except Exception as e:
            logger.exception(f"Frame {frame_id} ({op}) failed: {e}")
            return error(frame_id, "Internal error")
        return ack(frame_id, result)

    def close(self) -> None:
        for unsubscribe in self._subscriptions.values():
            unsubscribe()
        self._subscriptions.clear()

    # ── Ops ───────────────────────────────────────────────────────

    async def _subscribe(self, frame_id, path: str, value) -> None:
        key = str(frame_id)
        if key in self._subscriptions:
            raise ProtocolError(f"Subscription {key} already exists")

        def on_snapshot(snapshot: Snapshot) -> None:
            self._emit({"type": "snapshot", "id": frame_id, "path": snapshot.path, "value": snapshot.value})

        self._subscriptions[key] = self.connection.subscribe(path, on_snapshot)

    async def _unsubscribe(self, frame_id, path: str, value) -> bool:
        unsubscribe = self._subscriptions.pop(str(value), None)
        if unsubscribe is None:
            return False
        unsubscribe()
        return True

    async def _push(self, frame_id, path: str, value) -> str:
        if not isinstance(value, dict):
            raise ProtocolError("push requires an object value")
        sender = SenderRole.parse(value.get("sender"))
        if not self.access.is_operator and sender != SenderRole.VISITOR:
            raise ProtocolError("Permission denied")
        key = await self.connection.push(path, value)
        parts = split_path(path)
        if len(parts) == 2 and parts[0] == MESSAGES_ROOT:
            record_message_appended(sender.value)
        return key

    async def _set(self, frame_id, path: str, value) -> None:
        self._require_path(path)
        await self.connection.set(path, value)

    async def _update(self, frame_id, path: str, value) -> None:
        if not isinstance(value, dict) or not value:
            raise ProtocolError("update requires a non-empty object value")
        await self.connection.update(path, value)

    async def _remove(self, frame_id, path: str, value) -> None:
        self._require_path(path)
        await self.connection.remove(path)

    async def _once(self, frame_id, path: str, value) -> Dict[str, Any]:
        snapshot = await self.connection.read_once(path)
        return {"path": snapshot.path, "value": snapshot.value}

    async def _on_disconnect(self, frame_id, path: str, value) -> None:
        self._require_path(path)
        await self.connection.on_disconnect_set(path, value)

    async def _cancel_on_disconnect(self, frame_id, path: str, value) -> None:
        await self.connection.cancel_on_disconnect(path)

    @staticmethod
    def _require_path(path: Optional[str]) -> None:
        # Root writes would wipe the whole tree.
        if not split_path(path or ""):
            raise ProtocolError("A non-root path is required")
