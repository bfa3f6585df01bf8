"""
Connection registry: map user_id to its single live WebSocket.

Created by the application lifespan and stored on app.state; nothing here is
a module-level singleton.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


def is_open(websocket: Any) -> bool:
    """True while neither side has closed the socket."""
    return (
        getattr(websocket, "client_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
        and getattr(websocket, "application_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
    )


class ConnectionRegistry:
    """Maps user_id to one WebSocket. The lock is never held across socket I/O."""

    def __init__(self) -> None:
        self._connections: Dict[str, Any] = {}  # user_id -> WebSocket
        self._lock = asyncio.Lock()

    async def bind(self, user_id: str, websocket: Any) -> Optional[Any]:
        """
        Register or replace the WebSocket for user_id.

        The previous connection, if any, is returned but left open: it simply
        stops receiving routed messages.
        """
        async with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = websocket
        if previous is not None and previous is not websocket:
            logger.info("WebSocket for user_id=%s replaced by a newer connection", user_id)
        else:
            logger.info("WebSocket registered for user_id=%s", user_id)
        return previous

    async def unbind(self, user_id: str, websocket: Any = None) -> bool:
        """
        Remove the entry for user_id.

        With websocket given, the entry is removed only if it still points at
        that connection, so a superseded device closing cannot evict the newer
        one. Unbinding an absent user is a no-op.
        """
        async with self._lock:
            current = self._connections.get(user_id)
            if current is None:
                return False
            if websocket is not None and current is not websocket:
                return False
            del self._connections[user_id]
        logger.info("WebSocket unregistered for user_id=%s", user_id)
        return True

    async def lookup(self, user_id: str) -> Optional[Any]:
        """Return the open WebSocket for user_id; a closed one is evicted."""
        async with self._lock:
            ws = self._connections.get(user_id)
            if ws is None:
                return None
            if not is_open(ws):
                del self._connections[user_id]
                logger.info("Evicted closed WebSocket for user_id=%s", user_id)
                return None
            return ws

    def is_connected(self, user_id: str) -> bool:
        """Return True if user has a registered WebSocket."""
        return user_id in self._connections

    async def get_connected_user_ids(self) -> List[str]:
        """Return list of user_ids that currently have a registered WebSocket."""
        async with self._lock:
            return list(self._connections.keys())

    def __len__(self) -> int:
        return len(self._connections)

    async def send_to_user(self, user_id: str, text: str) -> bool:
        """
        Push an encoded frame to user's WebSocket. Returns True if sent.

        A failed push is logged and the dead entry evicted; the error never
        reaches the caller.
        """
        ws = await self.lookup(user_id)
        if ws is None:
            return False
        try:
            await ws.send_text(text)
            return True
        except Exception as e:
            logger.warning("Send to user %s failed: %s", user_id, e)
            await self.unbind(user_id, ws)
            return False
