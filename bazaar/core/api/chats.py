"""
Chat REST endpoints: list conversations, get-or-create a conversation,
read history and mark messages as read.

Live delivery goes through the /ws socket; these endpoints are the
request/response side a client uses on page load and after reconnecting.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from bazaar.core.memory.db import get_db
from bazaar.core.memory.models import Chat
from bazaar.core.memory.repository import (
    ChatRepository,
    ListingRepository,
    MessageRepository,
    UserRepository,
)
from bazaar.core.security.permissions import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats", tags=["chats"])


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class CreateChatRequest(CamelModel):
    """Open (or reopen) a conversation with a seller about a listing."""
    seller_id: str = Field(alias="sellerId", min_length=1)
    listing_id: str = Field(alias="listingId", min_length=1)


class ChatResponse(CamelModel):
    id: str
    buyer_id: str = Field(alias="buyerId")
    seller_id: str = Field(alias="sellerId")
    listing_id: str = Field(alias="listingId")
    last_message_at: Optional[datetime] = Field(default=None, alias="lastMessageAt")
    created_at: datetime = Field(alias="createdAt")


class MessageResponse(CamelModel):
    id: int
    chat_id: str = Field(alias="chatId")
    sender_id: str = Field(alias="senderId")
    message: str
    is_read: bool = Field(alias="isRead")
    created_at: datetime = Field(alias="createdAt")


class MarkReadResponse(BaseModel):
    updated: int


def _get_chat_for_participant(db: Session, chat_id: str, user_id: str) -> Chat:
    chat = ChatRepository.get_by_id(db, chat_id)
    if not chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    if user_id not in (chat.buyer_id, chat.seller_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to view this chat")
    return chat


@router.get("", response_model=List[ChatResponse], response_model_by_alias=True)
def list_chats(
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Conversations of the current user, most recently active first."""
    return ChatRepository.list_for_user(db, user["user_id"])


@router.post("", response_model=ChatResponse, response_model_by_alias=True)
def create_chat(
    request: CreateChatRequest,
    response: Response,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get or create the conversation between the current user (as buyer) and a
    seller about one listing. 200 with the existing chat, 201 with a new one.
    """
    buyer_id = user["user_id"]
    if request.seller_id == buyer_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot start a chat with yourself")
    if not UserRepository.get_active(db, request.seller_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Seller not found")
    listing = ListingRepository.get_by_id(db, request.listing_id)
    if not listing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Listing not found")
    if listing.user_id != request.seller_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Listing does not belong to seller")

    chat, created = ChatRepository.get_or_create(db, buyer_id, request.seller_id, request.listing_id)
    if created:
        logger.info("Chat %s created buyer=%s seller=%s listing=%s", chat.id, buyer_id, request.seller_id, request.listing_id)
        response.status_code = status.HTTP_201_CREATED
    return chat


@router.get("/{chat_id}/messages", response_model=List[MessageResponse], response_model_by_alias=True)
def get_chat_messages(
    chat_id: str,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Message history of one conversation in creation order."""
    _get_chat_for_participant(db, chat_id, user["user_id"])
    return MessageRepository.list_for_chat(db, chat_id)


@router.post("/{chat_id}/read", response_model=MarkReadResponse)
def mark_chat_read(
    chat_id: str,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Read receipt: mark what the other participant sent as read."""
    _get_chat_for_participant(db, chat_id, user["user_id"])
    updated = MessageRepository.mark_read(db, chat_id, user["user_id"])
    return MarkReadResponse(updated=updated)
