"""
Realtime Store Module.

Hierarchical key-value tree with full-snapshot subscriptions,
on-disconnect actions and a durable SQL archive of the message log.
"""

from .base import RealtimeStore, Snapshot, StoreUnavailable
from .memory import RealtimeDatabase, StoreConnection

__all__ = [
    "RealtimeDatabase",
    "RealtimeStore",
    "Snapshot",
    "StoreConnection",
    "StoreUnavailable",
]
