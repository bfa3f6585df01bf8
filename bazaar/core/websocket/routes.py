"""
WebSocket route: /ws. Accept, then read frames until the socket closes.

The first frame must be `auth{token}`; authentication happens in-band rather
than through the query string. Collaborators (registry, authenticator,
relay) come from app.state, set up by the application lifespan.
"""
import asyncio
import logging
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect

from bazaar.core.config import settings
from bazaar.core.websocket.handler import ConnectionHandler
from bazaar.core.websocket.manager import is_open

logger = logging.getLogger(__name__)

CLOSE_AUTH_FAILED = 4001


async def _close(websocket: WebSocket, code: int, reason: str) -> None:
    if not is_open(websocket):
        return
    try:
        await websocket.close(code=code, reason=reason)
    except Exception as e:
        logger.debug("Close WebSocket failed: %s", e)


async def websocket_endpoint(websocket: WebSocket) -> None:
    """Run one connection through its lifecycle; always unbinds on exit."""
    state = websocket.app.state
    handler = ConnectionHandler(
        websocket,
        registry=state.connection_registry,
        authenticator=state.authenticator,
        relay=state.chat_relay,
    )
    await websocket.accept()
    loop = asyncio.get_event_loop()
    grace = settings.ws_auth_timeout_seconds
    auth_deadline: Optional[float] = loop.time() + grace if grace > 0 else None
    try:
        while True:
            timeout = None
            if auth_deadline is not None and not handler.is_authenticated:
                timeout = max(auth_deadline - loop.time(), 0.0)
            try:
                message = await asyncio.wait_for(websocket.receive(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.info("WebSocket closed: no authentication within %ss", grace)
                await _close(websocket, CLOSE_AUTH_FAILED, "auth_timeout")
                break
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                await handler.send_error("Binary frames are not supported")
                continue
            if not await handler.handle_text(raw):
                await _close(websocket, CLOSE_AUTH_FAILED, "auth_failed")
                break
    except WebSocketDisconnect:
        pass
    finally:
        await handler.close()
