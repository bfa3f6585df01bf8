"""
Authentication handshake for the chat socket.

The client proves its identity with the first frame (`auth{token}`); on
success the connection is bound to that user in the registry.
"""
import asyncio
import logging
from typing import Any, Callable, Optional

from bazaar.core.websocket.manager import ConnectionRegistry
from bazaar.core.websocket.protocol import auth_result, encode_frame
from bazaar.core.websocket.types import UserIdentity

logger = logging.getLogger(__name__)

CredentialVerifier = Callable[[str], Optional[UserIdentity]]


class AuthError(Exception):
    """Credential rejected; the caller closes the connection."""


class Authenticator:
    """Runs the blocking verifier off the event loop and binds on success."""

    def __init__(self, registry: ConnectionRegistry, verifier: CredentialVerifier) -> None:
        self._registry = registry
        self._verifier = verifier

    async def _verify(self, credential: str) -> Optional[UserIdentity]:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, self._verifier, credential)
        except Exception:
            logger.exception("Credential verification failed")
            return None

    async def authenticate(self, websocket: Any, credential: str) -> UserIdentity:
        """
        Validate credential and bind websocket to the resulting identity.

        Raises:
            AuthError after sending `auth{status: failed}`
        """
        identity = await self._verify(credential)
        if identity is None:
            await _send_quietly(websocket, encode_frame(auth_result(False)))
            raise AuthError("Invalid or expired token")
        await self._registry.bind(identity.user_id, websocket)
        await _send_quietly(websocket, encode_frame(auth_result(True)))
        logger.info("WebSocket authenticated user_id=%s role=%s", identity.user_id, identity.role)
        return identity


async def _send_quietly(websocket: Any, text: str) -> bool:
    try:
        await websocket.send_text(text)
        return True
    except Exception as e:
        logger.debug("Send auth frame failed: %s", e)
        return False
