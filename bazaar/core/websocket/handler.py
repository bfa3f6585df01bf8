"""
Per-connection lifecycle: UNAUTHENTICATED -> AUTHENTICATED -> CLOSED.

One ConnectionHandler per socket. Frames are handled one at a time, so a
sender's messages are stored in the order they arrived.
"""
import logging
from enum import Enum
from typing import Any, Optional

from bazaar.core.websocket.auth import AuthError, Authenticator
from bazaar.core.websocket.manager import ConnectionRegistry
from bazaar.core.websocket.protocol import (
    AuthFrame,
    ChatMessageFrame,
    ProtocolDecodeError,
    decode_frame,
    encode_frame,
    message_accepted,
    protocol_error,
)
from bazaar.core.websocket.relay import ChatRelay, RelayError
from bazaar.core.websocket.types import UserIdentity

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class ConnectionHandler:
    """Dispatches decoded frames for one WebSocket according to its state."""

    def __init__(
        self,
        websocket: Any,
        registry: ConnectionRegistry,
        authenticator: Authenticator,
        relay: ChatRelay,
    ) -> None:
        self.websocket = websocket
        self.state = ConnectionState.UNAUTHENTICATED
        self.identity: Optional[UserIdentity] = None
        self._registry = registry
        self._authenticator = authenticator
        self._relay = relay

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    async def send(self, text: str) -> bool:
        """Send to this connection; a dead socket is logged, not raised."""
        try:
            await self.websocket.send_text(text)
            return True
        except Exception as e:
            user_id = self.identity.user_id if self.identity else None
            logger.warning("Send chat frame failed for user_id=%s: %s", user_id, e)
            return False

    async def send_error(self, description: str) -> None:
        await self.send(encode_frame(protocol_error(description)))

    async def handle_text(self, raw: str) -> bool:
        """
        Handle one text frame. Returns False when the connection must close
        (failed authentication); every other error is answered with an
        `error` frame and the connection stays open.
        """
        if self.state is ConnectionState.CLOSED:
            return False
        try:
            frame = decode_frame(raw)
        except ProtocolDecodeError as e:
            await self.send_error(str(e))
            return True
        except Exception:
            logger.exception("Unexpected failure decoding chat frame")
            await self.send_error("Invalid message format")
            return True

        if isinstance(frame, AuthFrame):
            return await self._handle_auth(frame)
        if isinstance(frame, ChatMessageFrame):
            await self._handle_chat_message(frame)
            return True
        # decode_frame only yields the variants above
        await self.send_error("Unsupported message type")
        return True

    async def _handle_auth(self, frame: AuthFrame) -> bool:
        if self.is_authenticated:
            await self.send_error("Already authenticated")
            return True
        try:
            self.identity = await self._authenticator.authenticate(self.websocket, frame.token)
        except AuthError as e:
            logger.info("WebSocket authentication failed: %s", e)
            return False
        self.state = ConnectionState.AUTHENTICATED
        return True

    async def _handle_chat_message(self, frame: ChatMessageFrame) -> None:
        if not self.is_authenticated or self.identity is None:
            await self.send_error("Not authenticated")
            return
        try:
            message = await self._relay.relay(self.identity.user_id, frame.chat_id, frame.content)
        except RelayError as e:
            await self.send_error(str(e))
            return
        except Exception:
            logger.exception("Unexpected relay failure for user_id=%s chat_id=%s", self.identity.user_id, frame.chat_id)
            await self.send_error("Failed to send message")
            return
        await self.send(encode_frame(message_accepted(message)))

    async def close(self) -> None:
        """Enter CLOSED and drop this connection's registry binding, if any."""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        if self.identity is not None:
            await self._registry.unbind(self.identity.user_id, self.websocket)
