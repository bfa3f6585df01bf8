"""
Plain value types shared by the chat socket layer.

These are what cross thread boundaries: the store converts ORM rows into
them inside the worker thread, so no Session-bound object reaches the
event loop.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UserIdentity:
    """Authenticated user bound to a connection."""
    user_id: str
    role: str = "buyer"


@dataclass(frozen=True)
class Conversation:
    """A two-party chat scoped to one listing."""
    id: str
    buyer_id: str
    seller_id: str
    listing_id: str
    last_message_at: Optional[datetime] = None

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def other_participant(self, user_id: str) -> str:
        """The participant that is not user_id."""
        return self.seller_id if user_id == self.buyer_id else self.buyer_id


@dataclass(frozen=True)
class PersistedMessage:
    """A stored chat message as it is sent over the wire."""
    id: int
    chat_id: str
    sender_id: str
    body: str
    created_at: datetime
    is_read: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chatId": self.chat_id,
            "senderId": self.sender_id,
            "message": self.body,
            "isRead": self.is_read,
            "createdAt": self.created_at.isoformat(),
        }
