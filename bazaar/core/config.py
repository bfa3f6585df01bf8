"""
Configuration management for the Bazaar marketplace core.

Handles environment-based configuration for development and production.
"""
import os
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: str = os.getenv("ENVIRONMENT", "development")

    # Debug - handle non-boolean values gracefully
    debug: bool = False

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        """Parse debug from environment, handling non-boolean values."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ("true", "1", "yes")
        debug_env = os.getenv("DEBUG", "false").lower()
        return debug_env in ("true", "1", "yes")

    # API
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Database
    database_path: str = os.getenv("DATABASE_PATH", str(Path.home() / ".bazaar" / "bazaar.db"))
    database_echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Security: access tokens guard REST, refresh tokens authenticate the chat socket
    jwt_secret: str = os.getenv("JWT_SECRET", "change-me-in-production-use-strong-random-key")
    jwt_refresh_secret: str = os.getenv("JWT_REFRESH_SECRET", "change-me-in-production-use-another-key")
    token_algorithm: str = os.getenv("TOKEN_ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
    refresh_token_expire_days: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

    # Chat socket: seconds an unauthenticated connection may stay open (0 = no limit)
    ws_auth_timeout_seconds: float = float(os.getenv("WS_AUTH_TIMEOUT_SECONDS", "0"))

    # CORS
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")

    # Optional public name used in logs and the health endpoint
    service_name: Optional[str] = os.getenv("SERVICE_NAME", "bazaar-core")

    class Config:
        # Load .env from project root (bazaar/core/config.py -> parent.parent.parent)
        env_file = str(Path(__file__).resolve().parent.parent.parent / ".env")
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()


def get_database_url() -> str:
    """Get SQLite database URL."""
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{settings.database_path}"
