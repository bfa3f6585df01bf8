"""
Chat relay: persist a message, then forward it to the recipient if online.

Storage always comes first; a message that was not stored is never pushed.
Live delivery is at-most-once and best effort: an offline recipient reads
the message later through the history endpoint.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Optional

from bazaar.core.websocket.manager import ConnectionRegistry
from bazaar.core.websocket.protocol import encode_frame, message_delivered
from bazaar.core.websocket.types import Conversation, PersistedMessage

logger = logging.getLogger(__name__)


class ChatStore(ABC):
    """
    Blocking persistence collaborator of the relay.

    Implementations must be safe to call from executor threads and must
    return plain values, never Session-bound rows.
    """

    @abstractmethod
    def get_conversation(self, chat_id: str) -> Optional[Conversation]:
        """Return the conversation or None if it does not exist."""
        pass

    @abstractmethod
    def create_message(self, chat_id: str, sender_id: str, body: str) -> PersistedMessage:
        """Store an unread message and return it with its creation timestamp."""
        pass

    @abstractmethod
    def touch_last_message(self, chat_id: str, timestamp: datetime) -> None:
        """Advance the conversation's last_message_at; never move it backwards."""
        pass


class RelayError(Exception):
    """Base for failures reported back to the sender as an `error` frame."""


class UnknownConversation(RelayError):
    def __init__(self, chat_id: str) -> None:
        super().__init__("Chat not found")
        self.chat_id = chat_id


class NotParticipant(RelayError):
    def __init__(self, chat_id: str, user_id: str) -> None:
        super().__init__("Not authorized to send messages in this chat")
        self.chat_id = chat_id
        self.user_id = user_id


class PersistenceError(RelayError):
    def __init__(self) -> None:
        super().__init__("Failed to send message")


class ChatRelay:
    """Relays chat messages between the two participants of a conversation."""

    def __init__(self, store: ChatStore, registry: ConnectionRegistry) -> None:
        self._store = store
        self._registry = registry

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except Exception as e:
            logger.error("Chat store call %s failed: %s", getattr(fn, "__name__", fn), e, exc_info=True)
            raise PersistenceError()

    async def relay(self, sender_id: str, chat_id: str, body: str) -> PersistedMessage:
        """
        Store body as a message from sender_id in chat_id and push it to the
        other participant's live connection.

        Raises:
            UnknownConversation, NotParticipant: nothing was stored
            PersistenceError: storing the message or touching the chat failed
        """
        conversation = await self._call(self._store.get_conversation, chat_id)
        if conversation is None:
            raise UnknownConversation(chat_id)
        if not conversation.is_participant(sender_id):
            logger.warning("User %s tried to post into chat %s without being a participant", sender_id, chat_id)
            raise NotParticipant(chat_id, sender_id)

        message = await self._call(self._store.create_message, chat_id, sender_id, body)
        await self._call(self._store.touch_last_message, chat_id, message.created_at)

        recipient_id = conversation.other_participant(sender_id)
        delivered = await self._registry.send_to_user(recipient_id, encode_frame(message_delivered(message)))
        logger.debug(
            "Relayed message id=%s chat_id=%s to user_id=%s delivered=%s",
            message.id, chat_id, recipient_id, delivered,
        )
        return message
