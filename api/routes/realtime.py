"""
Realtime store transport over WebSocket.

Each socket gets its own store connection; when the socket drops, cleanly
or not, that connection's on-disconnect writes are applied.

Sockets authenticate with a ``token`` query parameter: the operator JWT
opens the whole tree, a visitor token from ``/auth/anonymous`` or
``/chat/identify`` opens that visitor's conversation. A socket without
a token connects, but every op on the tree is refused.
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from api.middleware.auth import decode_jwt_token, is_operator_claims
from api.realtime.connection_manager import ConnectionManager
from api.realtime.protocol import StoreAccess, StoreSession, error
from api.services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])

# Singleton connection manager
manager = ConnectionManager()


def get_manager() -> ConnectionManager:
    return manager


def resolve_access(token: Optional[str]) -> Optional[StoreAccess]:
    """Map a socket token to its access rules; None for a rejected token."""
    if not token:
        return StoreAccess.anonymous()
    try:
        claims = decode_jwt_token(token)
    except HTTPException as e:
        logger.warning(f"WS token rejected: {e.detail}")
        return None
    if is_operator_claims(claims):
        return StoreAccess.for_operator()
    if claims.get("role") == "visitor" and claims.get("sub"):
        return StoreAccess.for_visitor(claims["sub"])
    logger.warning(f"WS token for {claims.get('email') or claims.get('sub')} is not allowed")
    return None


async def _pump(websocket: WebSocket, outbox: asyncio.Queue):
    while True:
        frame = await outbox.get()
        await websocket.send_json(frame)


@router.websocket("/ws/store")
async def websocket_store(websocket: WebSocket):
    """
    WebSocket endpoint for the realtime store.

    Connect: /ws/store?token=<jwt>
    Receives: {"id": "1", "op": "subscribe", "path": "messages/u1"}
    Sends: {"type": "ack"|"snapshot"|"error", "id": "1", ...}
    """
    services = get_services()
    if not services.is_ready:
        await websocket.close(code=1013)
        return

    access = resolve_access(websocket.query_params.get("token"))
    if access is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connection = await manager.connect(websocket, services.database)
    outbox: asyncio.Queue = asyncio.Queue()
    session = StoreSession(connection, outbox.put_nowait, access)
    sender = asyncio.create_task(_pump(websocket, outbox))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                outbox.put_nowait(error(None, "Invalid JSON"))
                continue
            outbox.put_nowait(await session.handle(frame))
    except WebSocketDisconnect:
        pass
    finally:
        session.close()
        manager.disconnect(connection.client_id)
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
