"""Settings management and owner scoping."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    DATABASE_URL: str = "sqlite:///./leads.db"

    # Owner used when a caller does not identify a tenant
    DEFAULT_OWNER_UID: str = "demo"

    # Reporting
    ATTRIBUTION_WINDOW_DAYS: int = 30
    REALTIME_CONVERSIONS_HOURS: int = 24
    REALTIME_CONVERSIONS_LIMIT: int = 50

    # Shopify Admin API
    SHOPIFY_API_VERSION: str = "2024-07"
    SHOPIFY_SHOP_DOMAIN: Optional[str] = None
    SHOPIFY_ACCESS_TOKEN: Optional[str] = None

    # Meta Lead Ads
    META_ACCESS_TOKEN: Optional[str] = None
    META_APP_ID: Optional[str] = None
    META_APP_SECRET: Optional[str] = None

    # Observability
    SENTRY_DSN: Optional[str] = None
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def resolve_owner_uid(owner_uid: Optional[str]) -> str:
    """Return the owner identifier to scope a request to.

    Falls back to the configured default owner ("demo") when the caller did
    not supply one or supplied only whitespace.
    """
    if owner_uid and owner_uid.strip():
        return owner_uid.strip()
    return get_settings().DEFAULT_OWNER_UID
