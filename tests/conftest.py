"""
Shared fixtures. DATABASE_PATH must point at a temp file before any bazaar
module is imported, because the engine is created at import time.
"""
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="bazaar_test_")
os.environ["DATABASE_PATH"] = os.path.join(_DB_DIR, "bazaar.db")
os.environ.setdefault("JWT_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    """Recreate all tables for every test."""
    from bazaar.core.memory.db import engine
    from bazaar.core.memory.models import Base
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield engine


@pytest.fixture
def marketplace():
    """
    Buyer A, seller B, an outsider C, one listing of B and chat-1 between A
    and B about it. Returns the ids and refresh/access tokens per user.
    """
    from bazaar.core.memory.db import db_session
    from bazaar.core.memory.repository import (
        AuthTokenRepository,
        ChatRepository,
        ListingRepository,
        UserRepository,
    )
    from bazaar.core.security.tokens import TokenManager

    data = {}
    with db_session() as db:
        for key, role in (("a", "buyer"), ("b", "seller"), ("c", "buyer")):
            user = UserRepository.create(
                db, email=f"{key}@example.com", first_name=key.upper(), last_name="Test",
                role=role, user_id=f"user-{key}",
            )
            refresh, expires_at = TokenManager.create_refresh_token(user.id, role)
            AuthTokenRepository.create(db, user.id, refresh, expires_at)
            data[key] = {
                "id": user.id,
                "refresh": refresh,
                "access": TokenManager.create_access_token(user.id, role),
            }
        ListingRepository.create(db, user_id="user-b", title="Bike", listing_id="listing-1")
        ChatRepository.create(db, "user-a", "user-b", "listing-1", chat_id="chat-1")
    return data
