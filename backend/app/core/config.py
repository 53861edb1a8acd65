"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from backend.app.core.config import settings
    print(settings.ESCALATION_TIMEOUT_SECONDS)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

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
    APP_NAME: str = "TrustSync Notification Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 4000
    RELOAD: bool = True  # auto-reload on file changes (dev only)

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:4000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Escalation ──
    ESCALATION_TIMEOUT_SECONDS: float = 20.0  # single process-wide deadline
    EVENT_LIST_LIMIT: int = 50  # dashboard listing default

    # ── Dispatch defaults ──
    DEFAULT_EVENT_TYPE: str = "LOGIN_OTP"
    BINDING_TARGET_NUMBER: str = "+919999999999"  # bank virtual mobile number
    SMS_PROVIDER: str = "simulation"  # only the simulated gateway is wired

    # ── Demo seed (simulator user + bound device + context) ──
    SEED_DEMO_DATA: bool = True
    DEMO_USER_ID: str = "demo_user"
    DEMO_BOUND_DEVICE_ID: str = "device_888"
    DEMO_HAS_APP: bool = True
    DEMO_IS_ACTIVE: bool = False
    DEMO_DEVICE_ONLINE: bool = True
    DEMO_WHATSAPP_OPT_IN: bool = True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
