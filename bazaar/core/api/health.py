"""
Health check endpoint.

Returns service status and the number of live chat connections.
"""

from fastapi import APIRouter, Request

from bazaar.core.config import settings
from bazaar.core.utils.clock import utcnow

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health(request: Request):
    """
    Health check endpoint.

    Returns:
        Service status and basic runtime information
    """
    registry = getattr(request.app.state, "connection_registry", None)
    return {
        "status": "ok",
        "service": settings.service_name,
        "timestamp": utcnow().isoformat(),
        "live_connections": len(registry) if registry is not None else 0,
    }
