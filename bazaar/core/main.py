"""
Bazaar core - Main FastAPI application.

Composition root of the marketplace chat service: builds the connection
registry, authenticator and relay, and mounts the /ws socket next to the
chat REST endpoints.
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
import logging

from bazaar.core.config import settings
from bazaar.core.memory.db import init_db
from bazaar.core.memory.chat_store import SqlChatStore
from bazaar.core.api import chats, health
from bazaar.core.security.permissions import verify_chat_credential
from bazaar.core.websocket.auth import Authenticator
from bazaar.core.websocket.manager import ConnectionRegistry
from bazaar.core.websocket.relay import ChatRelay
from bazaar.core.websocket.routes import websocket_endpoint

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Lifespan event handlers
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized")

    registry = ConnectionRegistry()
    app.state.connection_registry = registry
    app.state.authenticator = Authenticator(registry, verify_chat_credential)
    app.state.chat_relay = ChatRelay(SqlChatStore(), registry)
    logger.info(
        "Bazaar core binding on %s:%s (ws auth timeout: %s)",
        settings.api_host,
        settings.api_port,
        f"{settings.ws_auth_timeout_seconds}s" if settings.ws_auth_timeout_seconds > 0 else "disabled",
    )

    yield

    logger.info("Bazaar core shutting down with %s live connections", len(registry))


# Create FastAPI app
app = FastAPI(
    title="Bazaar Core",
    description="Local marketplace backend: buyer/seller chat",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests. Health checks at DEBUG to reduce log spam."""
    path = request.url.path
    level = logger.debug if path == "/health" else logger.info
    level("%s %s", request.method, path)
    response = await call_next(request)
    level("%s %s - %s", request.method, path, response.status_code)
    return response


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc) if settings.debug else None,
        },
    )


# WebSocket for real-time buyer/seller chat
app.add_api_websocket_route("/ws", websocket_endpoint)

# Include routers
app.include_router(health.router)
app.include_router(chats.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bazaar.core.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
