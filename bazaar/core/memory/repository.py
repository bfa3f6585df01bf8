"""
Repository layer for database operations.

Provides high-level methods for the rows the chat core and its REST
endpoints touch: users, listings, chats, messages and refresh tokens.
"""
from typing import Optional, List, Any
from datetime import datetime
import logging
from sqlalchemy.orm import Session
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from bazaar.core.memory.models import (
    User,
    Listing,
    Chat,
    Message,
    AuthToken,
)
from bazaar.core.utils.clock import utcnow


logger = logging.getLogger(__name__)


def require_active_session(db: Session) -> None:
    """Raise if session is closed; prevents use-after-close."""
    if not db.is_active:
        raise RuntimeError(
            "Session already closed; do not use request session outside request scope "
            "or from another thread."
        )


def safe_refresh(db: Session, obj: Any) -> None:
    """Refresh an object after commit if the session is still usable."""
    if db.is_active:
        db.refresh(obj)


class UserRepository:
    """Repository for user operations."""

    @staticmethod
    def create(
        db: Session,
        email: str,
        first_name: str,
        last_name: str,
        role: str = "buyer",
        phone: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> User:
        """Create a new user. Password handling lives outside this service."""
        require_active_session(db)
        user = User(
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=role,
            phone=phone,
        )
        if user_id:
            user.id = user_id
        db.add(user)
        try:
            db.commit()
            safe_refresh(db, user)
        except Exception:
            db.rollback()
            raise
        return user

    @staticmethod
    def get_by_id(db: Session, user_id: str) -> Optional[User]:
        """Get user by ID."""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_active(db: Session, user_id: str) -> Optional[User]:
        """Get user by ID only if the account is active."""
        return db.query(User).filter(User.id == user_id, User.is_active.is_(True)).first()

    @staticmethod
    def set_active(db: Session, user_id: str, is_active: bool) -> Optional[User]:
        """Activate or deactivate an account."""
        require_active_session(db)
        user = UserRepository.get_by_id(db, user_id)
        if user:
            user.is_active = is_active
            db.commit()
        return user


class ListingRepository:
    """Repository for the listing rows conversations refer to."""

    @staticmethod
    def create(db: Session, user_id: str, title: str, listing_id: Optional[str] = None) -> Listing:
        """Create a listing owned by user_id."""
        require_active_session(db)
        listing = Listing(user_id=user_id, title=title)
        if listing_id:
            listing.id = listing_id
        db.add(listing)
        try:
            db.commit()
            safe_refresh(db, listing)
        except Exception:
            db.rollback()
            raise
        return listing

    @staticmethod
    def get_by_id(db: Session, listing_id: str) -> Optional[Listing]:
        """Get listing by ID."""
        return db.query(Listing).filter(Listing.id == listing_id).first()


class ChatRepository:
    """Repository for buyer/seller conversations."""

    @staticmethod
    def create(
        db: Session,
        buyer_id: str,
        seller_id: str,
        listing_id: str,
        chat_id: Optional[str] = None,
    ) -> Chat:
        """Create a conversation. Callers look up by participants first."""
        require_active_session(db)
        chat = Chat(buyer_id=buyer_id, seller_id=seller_id, listing_id=listing_id)
        if chat_id:
            chat.id = chat_id
        db.add(chat)
        try:
            db.commit()
            safe_refresh(db, chat)
        except Exception:
            db.rollback()
            raise
        return chat

    @staticmethod
    def get_by_id(db: Session, chat_id: str) -> Optional[Chat]:
        """Get conversation by ID."""
        return db.query(Chat).filter(Chat.id == chat_id).first()

    @staticmethod
    def get_by_participants(
        db: Session,
        buyer_id: str,
        seller_id: str,
        listing_id: str,
    ) -> Optional[Chat]:
        """Get the single conversation for a (buyer, seller, listing) triple."""
        return (
            db.query(Chat)
            .filter(
                and_(
                    Chat.buyer_id == buyer_id,
                    Chat.seller_id == seller_id,
                    Chat.listing_id == listing_id,
                )
            )
            .first()
        )

    @staticmethod
    def get_or_create(
        db: Session,
        buyer_id: str,
        seller_id: str,
        listing_id: str,
    ) -> tuple[Chat, bool]:
        """
        Return (chat, created). Looks up before creating; if a concurrent
        request wins the insert, the unique constraint rejects ours and the
        existing row is returned instead.
        """
        existing = ChatRepository.get_by_participants(db, buyer_id, seller_id, listing_id)
        if existing:
            return existing, False
        try:
            return ChatRepository.create(db, buyer_id, seller_id, listing_id), True
        except IntegrityError:
            existing = ChatRepository.get_by_participants(db, buyer_id, seller_id, listing_id)
            if existing is None:
                raise
            return existing, False

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> List[Chat]:
        """Conversations the user takes part in, most recently active first."""
        return (
            db.query(Chat)
            .filter(or_(Chat.buyer_id == user_id, Chat.seller_id == user_id))
            .order_by(Chat.last_message_at.desc().nullslast(), Chat.created_at.desc())
            .all()
        )

    @staticmethod
    def touch_last_message(db: Session, chat_id: str, timestamp: datetime) -> bool:
        """
        Advance last_message_at to timestamp; never moves it backwards.
        Returns False if the chat does not exist.
        """
        require_active_session(db)
        if not db.query(Chat.id).filter(Chat.id == chat_id).first():
            return False
        (
            db.query(Chat)
            .filter(
                Chat.id == chat_id,
                or_(Chat.last_message_at.is_(None), Chat.last_message_at < timestamp),
            )
            .update({Chat.last_message_at: timestamp}, synchronize_session=False)
        )
        db.commit()
        return True


class MessageRepository:
    """Repository for chat message operations."""

    @staticmethod
    def create(db: Session, chat_id: str, sender_id: str, body: str) -> Message:
        """Create a new unread message stamped with the current UTC time."""
        require_active_session(db)
        message = Message(
            chat_id=chat_id,
            sender_id=sender_id,
            message=body,
            is_read=False,
            created_at=utcnow(),
        )
        db.add(message)
        try:
            db.commit()
            safe_refresh(db, message)
        except Exception:
            db.rollback()
            raise
        return message

    @staticmethod
    def list_for_chat(db: Session, chat_id: str) -> List[Message]:
        """Messages of one conversation in creation order."""
        return (
            db.query(Message)
            .filter(Message.chat_id == chat_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .all()
        )

    @staticmethod
    def mark_read(db: Session, chat_id: str, reader_id: str) -> int:
        """Mark messages the other participant sent as read. Returns rows changed."""
        require_active_session(db)
        updated = (
            db.query(Message)
            .filter(
                Message.chat_id == chat_id,
                Message.sender_id != reader_id,
                Message.is_read.is_(False),
            )
            .update({Message.is_read: True}, synchronize_session=False)
        )
        db.commit()
        return updated


class AuthTokenRepository:
    """Repository for issued refresh tokens."""

    @staticmethod
    def create(db: Session, user_id: str, refresh_token: str, expires_at: datetime) -> AuthToken:
        """Store an issued refresh token."""
        require_active_session(db)
        token = AuthToken(user_id=user_id, refresh_token=refresh_token, expires_at=expires_at)
        db.add(token)
        try:
            db.commit()
            safe_refresh(db, token)
        except Exception:
            db.rollback()
            raise
        return token

    @staticmethod
    def get_valid(db: Session, refresh_token: str) -> Optional[AuthToken]:
        """Get a stored refresh token that has not expired."""
        return (
            db.query(AuthToken)
            .filter(AuthToken.refresh_token == refresh_token, AuthToken.expires_at > utcnow())
            .first()
        )

    @staticmethod
    def delete(db: Session, refresh_token: str) -> bool:
        """Revoke one refresh token."""
        require_active_session(db)
        deleted = db.query(AuthToken).filter(AuthToken.refresh_token == refresh_token).delete()
        db.commit()
        return deleted > 0

    @staticmethod
    def delete_for_user(db: Session, user_id: str) -> int:
        """Revoke every refresh token of a user."""
        require_active_session(db)
        deleted = db.query(AuthToken).filter(AuthToken.user_id == user_id).delete()
        db.commit()
        return deleted
