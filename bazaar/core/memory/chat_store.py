"""
SQL-backed persistence collaborator for the chat relay.

Each call opens its own db_session() so it can run in an executor thread;
results are converted to frozen dataclasses before the session closes.
"""
import logging
from datetime import datetime
from typing import Callable, ContextManager, Optional

from sqlalchemy.orm import Session

from bazaar.core.memory.db import db_session
from bazaar.core.memory.models import Chat, Message
from bazaar.core.memory.repository import ChatRepository, MessageRepository
from bazaar.core.websocket.relay import ChatStore
from bazaar.core.websocket.types import Conversation, PersistedMessage

logger = logging.getLogger(__name__)


def conversation_from_row(chat: Chat) -> Conversation:
    return Conversation(
        id=chat.id,
        buyer_id=chat.buyer_id,
        seller_id=chat.seller_id,
        listing_id=chat.listing_id,
        last_message_at=chat.last_message_at,
    )


def message_from_row(message: Message) -> PersistedMessage:
    return PersistedMessage(
        id=message.id,
        chat_id=message.chat_id,
        sender_id=message.sender_id,
        body=message.message,
        created_at=message.created_at,
        is_read=bool(message.is_read),
    )


class SqlChatStore(ChatStore):
    """Blocking store; the relay calls it through run_in_executor."""

    def __init__(self, session_factory: Callable[[], ContextManager[Session]] = db_session) -> None:
        self._session_factory = session_factory

    def get_conversation(self, chat_id: str) -> Optional[Conversation]:
        with self._session_factory() as db:
            chat = ChatRepository.get_by_id(db, chat_id)
            return conversation_from_row(chat) if chat else None

    def create_message(self, chat_id: str, sender_id: str, body: str) -> PersistedMessage:
        with self._session_factory() as db:
            message = MessageRepository.create(db, chat_id=chat_id, sender_id=sender_id, body=body)
            logger.debug("Stored message id=%s chat_id=%s", message.id, chat_id)
            return message_from_row(message)

    def touch_last_message(self, chat_id: str, timestamp: datetime) -> None:
        with self._session_factory() as db:
            if not ChatRepository.touch_last_message(db, chat_id, timestamp):
                raise LookupError(f"Chat {chat_id} disappeared before last_message_at update")
