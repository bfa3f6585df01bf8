"""
Naive UTC timestamps, the form SQLite DateTime columns and JWT claims use here.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
