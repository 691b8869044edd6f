"""
In-process realtime database.

A hierarchical JSON-like tree shared by any number of client
connections. Listeners receive the complete snapshot of their path on
subscribe and after every write that changes it; each connection can
register values to be written when it drops.
"""

import copy
import itertools
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .base import (
    Snapshot,
    SnapshotCallback,
    StoreUnavailable,
    Unsubscribe,
    is_related,
    join_path,
    split_path,
)

logger = logging.getLogger(__name__)

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize(value: Any) -> Any:
    """Drop ``None`` leaves and empty mappings, the tree never stores them."""
    if isinstance(value, dict):
        cleaned = {}
        for key, child in value.items():
            child = normalize(child)
            if child is not None:
                cleaned[str(key)] = child
        return cleaned or None
    return copy.deepcopy(value)


class PushIdGenerator:
    """
    Chronologically sortable 20-character keys.

    Eight characters encode the millisecond timestamp, twelve more are
    random and get incremented when two keys share a timestamp, so keys
    sort in generation order within one process.
    """

    def __init__(self, now_func: Callable[[], int] = _now_ms):
        self._now = now_func
        self._last_ts = -1
        self._last_rand: List[int] = []

    def __call__(self) -> str:
        now = max(self._now(), self._last_ts)
        if now == self._last_ts:
            for i in range(11, -1, -1):
                if self._last_rand[i] == 63:
                    self._last_rand[i] = 0
                    continue
                self._last_rand[i] += 1
                break
        else:
            seed = uuid.uuid4().int
            self._last_rand = [(seed >> (6 * i)) & 63 for i in range(12)]
        self._last_ts = now

        stamp = []
        for _ in range(8):
            stamp.append(PUSH_CHARS[now % 64])
            now //= 64
        return "".join(reversed(stamp)) + "".join(PUSH_CHARS[r] for r in self._last_rand)


@dataclass
class _Listener:
    listener_id: int
    path: List[str]
    callback: SnapshotCallback
    client_id: str
    last_value: Any = None


class RealtimeDatabase:
    """Shared tree plus the listener registry for every connection."""

    def __init__(self, now_func: Callable[[], int] = _now_ms):
        self._root: Dict[str, Any] = {}
        self._listeners: Dict[int, _Listener] = {}
        self._listener_ids = itertools.count(1)
        self._connections: Dict[str, "StoreConnection"] = {}
        self.next_push_id = PushIdGenerator(now_func)

    def connect(self, client_id: Optional[str] = None) -> "StoreConnection":
        """Open a client connection against this tree."""
        conn = StoreConnection(self, client_id or uuid.uuid4().hex)
        self._connections[conn.client_id] = conn
        logger.debug(f"Store client connected: {conn.client_id} (total: {len(self._connections)})")
        return conn

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get(self, path: str = "") -> Any:
        return copy.deepcopy(self._value_at(split_path(path)))

    def load(self, path: str, value: Any) -> None:
        """Seed a subtree outside of any client connection."""
        self.write([(split_path(path), value)])

    # ── Internals used by StoreConnection ─────────────────────────

    def add_listener(self, path: str, callback: SnapshotCallback, client_id: str) -> int:
        parts = split_path(path)
        listener = _Listener(
            listener_id=next(self._listener_ids),
            path=parts,
            callback=callback,
            client_id=client_id,
            last_value=copy.deepcopy(self._value_at(parts)),
        )
        self._listeners[listener.listener_id] = listener
        self._deliver(listener, listener.last_value)
        return listener.listener_id

    def remove_listener(self, listener_id: int) -> None:
        self._listeners.pop(listener_id, None)

    def forget(self, client_id: str) -> None:
        self._connections.pop(client_id, None)
        logger.debug(f"Store client gone: {client_id} (total: {len(self._connections)})")

    def write(self, changes: List[Tuple[List[str], Any]]) -> None:
        """Apply a batch of path writes, then notify every changed listener once."""
        affected = [
            listener for listener in self._listeners.values()
            if any(is_related(listener.path, parts) for parts, _ in changes)
        ]
        for parts, value in changes:
            self._apply(parts, normalize(value))

        for listener in affected:
            if listener.listener_id not in self._listeners:
                continue
            current = self._value_at(listener.path)
            if current == listener.last_value:
                continue
            listener.last_value = copy.deepcopy(current)
            self._deliver(listener, current)

    def _deliver(self, listener: _Listener, value: Any) -> None:
        snapshot = Snapshot(path="/".join(listener.path), value=copy.deepcopy(value))
        try:
            listener.callback(snapshot)
        except Exception:
            logger.exception(f"Listener {listener.listener_id} on '{snapshot.path}' failed")

    def _value_at(self, parts: List[str]) -> Any:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        if isinstance(node, dict) and not node:
            return None
        return node

    def _apply(self, parts: List[str], value: Any) -> None:
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return

        trail = [self._root]
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[part] = child
            node = child
            trail.append(node)

        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = value

        # Prune parents left empty by a delete.
        for depth in range(len(parts) - 1, 0, -1):
            if trail[depth]:
                break
            trail[depth - 1].pop(parts[depth - 1], None)


class StoreConnection:
    """One client's session against a RealtimeDatabase."""

    def __init__(self, database: RealtimeDatabase, client_id: str):
        self.client_id = client_id
        self._db = database
        self._listener_ids: Set[int] = set()
        self._on_disconnect: Dict[str, Any] = {}
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def pending_disconnect_actions(self) -> Dict[str, Any]:
        return dict(self._on_disconnect)

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise StoreUnavailable(f"Store connection {self.client_id} is closed")

    def subscribe(self, path: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        self._ensure_connected()
        listener_id = self._db.add_listener(path, on_snapshot, self.client_id)
        self._listener_ids.add(listener_id)

        def unsubscribe() -> None:
            if listener_id in self._listener_ids:
                self._listener_ids.discard(listener_id)
                self._db.remove_listener(listener_id)

        return unsubscribe

    async def push(self, path: str, record: Dict[str, Any]) -> str:
        self._ensure_connected()
        key = self._db.next_push_id()
        self._db.write([(split_path(path) + [key], record)])
        return key

    async def set(self, path: str, value: Any) -> None:
        self._ensure_connected()
        self._db.write([(split_path(path), value)])

    async def update(self, path: str, partial: Dict[str, Any]) -> None:
        self._ensure_connected()
        base = split_path(path)
        self._db.write([(base + split_path(key), value) for key, value in partial.items()])

    async def remove(self, path: str) -> None:
        await self.set(path, None)

    async def read_once(self, path: str) -> Snapshot:
        self._ensure_connected()
        return Snapshot(path=join_path(path), value=self._db.get(path))

    async def on_disconnect_set(self, path: str, value: Any) -> None:
        self._ensure_connected()
        self._on_disconnect[join_path(path)] = copy.deepcopy(value)

    async def cancel_on_disconnect(self, path: str) -> None:
        self._ensure_connected()
        self._on_disconnect.pop(join_path(path), None)

    def disconnect(self) -> int:
        """
        Drop the connection, clean or not.

        Registered on-disconnect values are written as one batch after the
        connection's own listeners are detached. Returns the number of
        actions applied; calling it again is a no-op.
        """
        if not self._connected:
            return 0
        self._connected = False
        for listener_id in list(self._listener_ids):
            self._db.remove_listener(listener_id)
        self._listener_ids.clear()

        actions = [(split_path(path), value) for path, value in self._on_disconnect.items()]
        self._on_disconnect.clear()
        if actions:
            self._db.write(actions)
            logger.info(f"Applied {len(actions)} on-disconnect action(s) for {self.client_id}")
        self._db.forget(self.client_id)
        return len(actions)

    async def close(self) -> None:
        self.disconnect()
