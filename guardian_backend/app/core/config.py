"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development, so the engine
boots against a local SQLite file with no geocoder and no webhook.

Usage:
    from guardian_backend.app.core.config import settings
    print(settings.DATABASE_URL)

Services never import the module-level ``settings`` themselves; the
composition root (``guardian_backend.app.container``) hands each one the
``Settings`` instance it was built with.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
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
    APP_NAME: str = "Guardian Dispatch Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 1
    RELOAD: bool = True

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Database ──
    DATABASE_URL: str = "sqlite:///./guardian_dispatch.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False  # log SQL queries

    # ── Redis (reverse-geocode cache, optional) ──
    REDIS_URL: Optional[str] = None
    GEOCODE_CACHE_TTL: int = 86400  # 24 h

    # ── Geocoder / maps provider ──
    GEOCODER_PROVIDER: str = "none"  # none | google
    GOOGLE_MAPS_API_KEY: Optional[str] = None
    GOOGLE_MAPS_BASE_URL: str = "https://maps.googleapis.com/maps/api"
    GEOCODER_TIMEOUT_SECONDS: float = 5.0
    ENRICHMENT_TIMEOUT_SECONDS: float = 8.0
    ENRICHMENT_MAX_WORKERS: int = 2

    # ── Notification boundary ──
    NOTIFIER_WEBHOOK_URL: Optional[str] = None  # None → log-only simulation
    NOTIFIER_TIMEOUT_SECONDS: float = 5.0
    NOTIFIER_MAX_WORKERS: int = 4

    # ── Matching ──
    MATCH_MAX_CANDIDATES: int = 5
    MATCH_MAX_DISTANCE_METERS: float = 10_000.0

    # ── Tracking ──
    PROXIMITY_THRESHOLD_KM: float = 1.0
    PROXIMITY_REARM_KM: float = 1.2
    LOCATION_HISTORY_LIMIT: int = 100

    # ── Trusted locations / geofence ──
    GEOFENCE_MATCH_POLICY: str = "nearest"  # nearest | first
    GEOFENCE_SUPPRESS_DISPATCH: bool = False
    TRUSTED_LOCATION_DEFAULT_RADIUS_M: float = 100.0
    TRUSTED_LOCATION_MIN_RADIUS_M: float = 10.0
    TRUSTED_LOCATION_MAX_RADIUS_M: float = 1000.0

    # ── Responders / escalation ──
    RESPONDER_STALE_AFTER_SECONDS: int = 900  # 15 min
    ESCALATION_TARGET_ID: str = "dispatch-escalation"
    ALERT_LIST_LIMIT: int = 50

    @field_validator("GEOFENCE_MATCH_POLICY")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        if value not in ("nearest", "first"):
            raise ValueError("GEOFENCE_MATCH_POLICY must be 'nearest' or 'first'")
        return value

    @field_validator("GEOCODER_PROVIDER")
    @classmethod
    def _check_provider(cls, value: str) -> str:
        if value not in ("none", "google"):
            raise ValueError("GEOCODER_PROVIDER must be 'none' or 'google'")
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
