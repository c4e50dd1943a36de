"""WebSocket endpoints for push delivery.

A client registers a socket at ``/ws/push`` to receive the push messages for
its user. A user may hold several sockets (one per device); every push goes
to all of them.
"""

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status
from typing import Any, Dict, Set
from datetime import datetime, timezone
import logging

from auth import authenticate
from notifications import PushSender

# Configure logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/ws",
    tags=["WebSocket"]
)


def websocket_token(websocket: WebSocket) -> str:
    """Bearer token from the ``token`` query parameter or the Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ""


async def authenticate_websocket(websocket: WebSocket) -> str:
    """User id of a websocket client, or an empty string after closing it."""
    verifier = getattr(websocket.app.state, 'session_verifier', None)
    try:
        return await authenticate(verifier, websocket_token(websocket))
    except HTTPException as e:
        logger.info(f"Rejected websocket connection: {e.detail}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return ""


class ConnectionManager(PushSender):
    """Tracks push sockets per user and delivers push messages to them."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: str):
        """Accept connection and add to active connections."""
        await websocket.accept()
        self.active_connections.setdefault(user_id, set()).add(websocket)
        logger.info(f"Push socket connected for {user_id}")

    def disconnect(self, websocket: WebSocket, user_id: str):
        """Remove connection from active connections."""
        sockets = self.active_connections.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.active_connections[user_id]
        logger.info(f"Push socket closed for {user_id}")

    def connection_count(self, user_id: str) -> int:
        return len(self.active_connections.get(user_id, ()))

    async def send_push(self, user_id: str, title: str, body: str, payload: Dict[str, Any]) -> None:
        """Send a push message to every socket of ``user_id``.

        A user with no open socket is simply offline; that is not an error.
        """
        sockets = list(self.active_connections.get(user_id, ()))
        if not sockets:
            logger.debug(f"No push socket for {user_id}")
            return

        message = {
            "type": "push",
            "title": title,
            "body": body,
            "data": payload,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        dead_connections = set()
        for connection in sockets:
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Failed to push to {user_id}: {e}")
                dead_connections.add(connection)

        # Clean up dead connections
        for dead in dead_connections:
            self.disconnect(dead, user_id)

        if len(dead_connections) == len(sockets):
            raise ConnectionError(f"No push socket of {user_id} accepted the message")


@router.websocket("/push")
async def push_endpoint(websocket: WebSocket):
    """Register this socket as a push receiver for the authenticated user."""
    user_id = await authenticate_websocket(websocket)
    if not user_id:
        return

    manager: ConnectionManager = websocket.app.state.push_manager
    await manager.connect(websocket, user_id)
    try:
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({
                    "type": "pong",
                    "timestamp": datetime.now(timezone.utc).isoformat()
                })
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket, user_id)


# Export the router and manager
__all__ = ['router', 'ConnectionManager', 'authenticate_websocket', 'websocket_token']
