"""
RealtimeStore protocol for the chat engine.

Abstracts the hierarchical realtime tree so the synchronizer can work
with the in-process database or any transport that offers the same
full-snapshot contract.
"""

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable


class StoreUnavailable(ConnectionError):
    """The store connection is gone; the write was not applied."""


def split_path(path: str) -> List[str]:
    """Split ``"messages/u1/m1"`` into its segments, ignoring stray slashes."""
    return [part for part in path.strip("/").split("/") if part]


def join_path(*parts: str) -> str:
    return "/".join(segment for part in parts for segment in split_path(part))


def is_related(a: List[str], b: List[str]) -> bool:
    """True when one path is an ancestor of (or equal to) the other."""
    n = min(len(a), len(b))
    return a[:n] == b[:n]


@dataclass(frozen=True)
class Snapshot:
    """A complete point-in-time copy of a store sub-tree."""

    path: str
    value: Any = None

    @property
    def key(self) -> Optional[str]:
        parts = split_path(self.path)
        return parts[-1] if parts else None

    def exists(self) -> bool:
        return self.value is not None

    def val(self) -> Any:
        return copy.deepcopy(self.value)

    def children(self) -> Dict[str, Any]:
        if isinstance(self.value, dict):
            return copy.deepcopy(self.value)
        return {}


SnapshotCallback = Callable[[Snapshot], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class RealtimeStore(Protocol):
    """Protocol for one client's view of the realtime tree."""

    def subscribe(self, path: str, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Deliver the full snapshot now and on every change under ``path``."""
        ...

    async def push(self, path: str, record: Dict[str, Any]) -> str:
        """Append ``record`` under a new chronologically sortable key."""
        ...

    async def set(self, path: str, value: Any) -> None:
        """Replace the value at ``path``; ``None`` deletes it."""
        ...

    async def update(self, path: str, partial: Dict[str, Any]) -> None:
        """Merge ``partial`` into the mapping at ``path``."""
        ...

    async def remove(self, path: str) -> None:
        ...

    async def read_once(self, path: str) -> Snapshot:
        ...

    async def on_disconnect_set(self, path: str, value: Any) -> None:
        """Register ``value`` to be written at ``path`` when this client drops."""
        ...

    async def cancel_on_disconnect(self, path: str) -> None:
        ...
