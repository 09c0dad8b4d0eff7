"""Configuration settings for the ledgersync backend."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment.

    Every secret is optional: a missing secret disables the feature it
    guards (the endpoint answers 503) instead of failing startup.
    """

    # Supabase
    supabase_url: str | None = None
    # New key system (preferred)
    supabase_secret_key: str | None = None
    # Legacy key, still accepted
    supabase_service_role_key: str | None = None
    supabase_sync_schema: str = "public"
    storage_timeout_seconds: float = Field(default=8.0, gt=0)
    upsert_batch_size: int = Field(default=500, ge=1)

    # Sync auth: HMAC of the workspace key, or a shared static key
    sync_secret: str | None = None
    sync_shared_key: str | None = None

    # Admin auth
    admin_secret: str | None = None

    # AI pass-through
    ai_provider: Literal["none", "openai"] = "none"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"

    # Rate limiting
    rate_limit_enabled: bool = True
    sync_rate_limit: str = "60/minute"
    trusted_proxy_cidrs: list[str] = [
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "::1/128",
    ]

    # App
    debug: bool = False
    log_level: str = "INFO"
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    @property
    def supabase_api_key(self) -> str | None:
        """Prefer the new secret key, fall back to the legacy service_role key."""
        return self.supabase_secret_key or self.supabase_service_role_key

    @property
    def storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
