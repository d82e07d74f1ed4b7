"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from backend.app.core.config import settings
    print(settings.NOTIFY_MAX_RADIUS_KM)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Emergency Notification Fan-out"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Nearby targeting ──
    NOTIFY_MIN_RADIUS_KM: float = 0.05  # exclusive lower bound (self-match floor)
    NOTIFY_MAX_RADIUS_KM: float = 5.0   # inclusive upper bound
    DESCRIPTION_TRUNCATE_LEN: int = 100
    TRUNCATION_POLICY: str = "when_truncated"  # when_truncated | always

    # ── Invocation ──
    NOTIFY_CONCURRENT_BRANCHES: bool = False
    NOTIFY_TIMEOUT_SECONDS: float = 60.0

    # ── Push transport / user directory ──
    PUSH_PROVIDER: str = "simulation"  # simulation | firebase
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None  # None → application default credentials
    FIREBASE_PROJECT_ID: Optional[str] = None
    USERS_COLLECTION: str = "users"
    FCM_MULTICAST_BATCH_SIZE: int = 500  # FCM hard cap per multicast

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
