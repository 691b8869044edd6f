"""
WebSocket Connection Manager for the realtime store transport.

Pairs every accepted WebSocket with its own store connection so that the
connection's on-disconnect actions run when the socket goes away.
"""

import logging
from typing import Dict, Tuple

from fastapi import WebSocket

from api.middleware.metrics import record_realtime_connect, record_realtime_disconnect
from realtime.memory import RealtimeDatabase, StoreConnection

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages active realtime WebSocket clients by client id."""

    def __init__(self):
        self._connections: Dict[str, Tuple[WebSocket, StoreConnection]] = {}

    async def connect(self, websocket: WebSocket, database: RealtimeDatabase) -> StoreConnection:
        """Accept the socket and open a store connection for it."""
        await websocket.accept()
        connection = database.connect()
        self._connections[connection.client_id] = (websocket, connection)
        record_realtime_connect()
        logger.info(f"WS connected: {connection.client_id} (total: {self.active_count})")
        return connection

    def disconnect(self, client_id: str) -> int:
        """Drop a client, clean or not; returns the on-disconnect actions applied."""
        entry = self._connections.pop(client_id, None)
        if entry is None:
            return 0
        _, connection = entry
        applied = connection.disconnect()
        record_realtime_disconnect(applied)
        logger.info(f"WS disconnected: {client_id} ({applied} on-disconnect action(s))")
        return applied

    def disconnect_all(self) -> None:
        for client_id in list(self._connections):
            self.disconnect(client_id)

    @property
    def active_count(self) -> int:
        return len(self._connections)

    def is_connected(self, client_id: str) -> bool:
        return client_id in self._connections
