"""WebSocket endpoint for the chat relay.

- WS /ws/chat?token=<jwt> (or ``Sec-WebSocket-Protocol: auth.<jwt>``)
- JWT verified before accept; the verified identity is bound to the
  connection so a ``connect`` envelope cannot claim someone else's role
- Frames are handled one at a time, in receipt order
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from src.gateway.middleware.auth import decode_token
from src.relay import envelopes
from src.shared.errors import AuthenticationError

if TYPE_CHECKING:
    from src.relay.engine import ChatRelay

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4001


class _FastAPIWebSocketConnection:
    """Adapter from FastAPI WebSocket to the relay's ChatConnection protocol."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._connection_id = str(uuid.uuid4())

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def send(self, data: dict[str, Any]) -> None:
        await self._ws.send_json(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._ws.application_state != WebSocketState.DISCONNECTED:
            await self._ws.close(code=code, reason=reason)


def _extract_token(websocket: WebSocket) -> tuple[str | None, str | None]:
    """Return (token, subprotocol to echo back)."""
    token = websocket.query_params.get("token")
    if token:
        return token, None
    protocols = websocket.headers.get("sec-websocket-protocol", "")
    for proto in protocols.split(","):
        proto = proto.strip()
        if proto.startswith("auth."):
            return proto[5:], proto
    return None, None


def create_chat_ws_router(*, relay: ChatRelay, jwt_secret: str) -> APIRouter:
    """Create WebSocket router with injected dependencies."""
    router = APIRouter(tags=["websocket"])

    @router.websocket("/ws/chat")
    async def websocket_chat(websocket: WebSocket) -> None:
        """Duplex chat connection for customers and admins."""
        token, subprotocol = _extract_token(websocket)
        if not token:
            await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Missing authentication token")
            return

        try:
            payload = decode_token(token, secret=jwt_secret)
        except AuthenticationError:
            await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason="Invalid authentication token")
            return

        await websocket.accept(subprotocol=subprotocol)
        connection = _FastAPIWebSocketConnection(websocket)
        relay.open(connection, verified_user_id=payload.user_id, verified_role=payload.role)
        logger.info(
            "WS connected connection_id=%s user_id=%s role=%s",
            connection.connection_id,
            payload.user_id,
            payload.role,
        )

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
                text = message.get("text")
                if text is None:
                    await connection.send(envelopes.error("Frame must be JSON text"))
                    continue
                try:
                    frame = json.loads(text)
                except json.JSONDecodeError:
                    await connection.send(envelopes.error("Frame is not valid JSON"))
                    continue
                await relay.handle(connection.connection_id, frame)
        except WebSocketDisconnect:
            logger.info("WS disconnected connection_id=%s", connection.connection_id)
        except Exception:
            logger.exception("WS error connection_id=%s", connection.connection_id)
            await connection.close(code=1011, reason="Internal server error")
        finally:
            relay.close(connection.connection_id)

    return router
