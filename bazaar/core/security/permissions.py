"""
Authentication dependencies for REST endpoints and the chat socket.

`get_current_user` guards HTTP routes with a bearer access token;
`verify_chat_credential` is the credential collaborator of the socket
handshake and checks refresh tokens, including revocation.
"""
import logging
from typing import Optional

from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from bazaar.core.memory.db import get_db, db_session
from bazaar.core.memory.repository import UserRepository, AuthTokenRepository
from bazaar.core.security.tokens import TokenManager
from bazaar.core.websocket.types import UserIdentity

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> dict:
    """
    Dependency to get current authenticated user from an access token.

    Returns:
        Dict with user_id, role and email

    Raises:
        HTTPException if token is invalid or user not found/inactive
    """
    payload = TokenManager.verify_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = UserRepository.get_active(db, payload["userId"])
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {
        "user_id": user.id,
        "role": user.role,
        "email": user.email,
    }


def verify_chat_credential(token: str) -> Optional[UserIdentity]:
    """
    Blocking credential check for the socket `auth` frame.

    Rejects forged or expired JWTs, refresh tokens no longer stored
    (logged out or revoked), and inactive accounts.
    """
    payload = TokenManager.verify_refresh_token(token)
    if payload is None:
        return None
    user_id = payload["userId"]
    with db_session() as db:
        if AuthTokenRepository.get_valid(db, token) is None:
            logger.info("Rejected revoked refresh token for user_id=%s", user_id)
            return None
        user = UserRepository.get_active(db, user_id)
        if not user:
            return None
        return UserIdentity(user_id=user.id, role=user.role)
