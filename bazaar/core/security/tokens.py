"""
Token management for authentication.

Handles JWT access/refresh token generation and validation. Access tokens
authorize REST calls; refresh tokens are also what the chat socket accepts
in its `auth` frame.
"""
import uuid
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple
from jose import JWTError, jwt

from bazaar.core.config import settings
from bazaar.core.utils.clock import utcnow


class TokenManager:
    """Manages JWT access and refresh tokens."""

    @staticmethod
    def _encode(data: Dict[str, Any], secret: str, expires_delta: timedelta) -> Tuple[str, datetime]:
        to_encode = data.copy()
        now = utcnow()
        expire = now + expires_delta
        # jti keeps two tokens issued in the same second distinct
        to_encode.update({"exp": expire, "iat": now, "jti": uuid.uuid4().hex})
        encoded_jwt = jwt.encode(to_encode, secret, algorithm=settings.token_algorithm)
        return encoded_jwt, expire

    @staticmethod
    def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
        """
        Create a short-lived access token.

        Args:
            user_id: Subject of the token
            role: buyer, seller or admin
            expires_delta: Optional override of the configured lifetime

        Returns:
            Encoded JWT token string
        """
        delta = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
        token, _ = TokenManager._encode({"userId": user_id, "role": role}, settings.jwt_secret, delta)
        return token

    @staticmethod
    def create_refresh_token(
        user_id: str, role: str, expires_delta: Optional[timedelta] = None
    ) -> Tuple[str, datetime]:
        """
        Create a refresh token.

        Returns:
            (token, expires_at). The caller stores it with AuthTokenRepository;
            an unstored refresh token is treated as revoked.
        """
        delta = expires_delta or timedelta(days=settings.refresh_token_expire_days)
        return TokenManager._encode({"userId": user_id, "role": role}, settings.jwt_refresh_secret, delta)

    @staticmethod
    def _decode(token: str, secret: str) -> Optional[Dict[str, Any]]:
        try:
            payload = jwt.decode(token, secret, algorithms=[settings.token_algorithm])
        except JWTError:
            return None
        if not payload.get("userId"):
            return None
        return payload

    @staticmethod
    def verify_token(token: str) -> Optional[Dict[str, Any]]:
        """
        Verify and decode an access token.

        Returns:
            Decoded payload dict or None if invalid, expired or malformed
        """
        return TokenManager._decode(token, settings.jwt_secret)

    @staticmethod
    def verify_refresh_token(token: str) -> Optional[Dict[str, Any]]:
        """
        Verify signature and expiry of a refresh token.

        Revocation is checked separately against the auth_tokens table.
        """
        return TokenManager._decode(token, settings.jwt_refresh_secret)
