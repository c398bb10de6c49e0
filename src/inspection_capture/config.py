"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_anon_key: str
    account_email_domain: str = "local.com"
    admin_usernames: str | None = "admin"
    photo_bucket: str = "photos"
    signed_url_ttl_seconds: int = 600
    lock_poll_interval_seconds: float = 3.0
    lock_grace_seconds: float = 6.0
    idle_timeout_seconds: float = 300.0
    idle_check_interval_seconds: float = 30.0
    draft_debounce_seconds: float = 0.7
    draft_db_path: str = "inspection_drafts.sqlite3"
    upload_concurrency: int = 6
    image_max_dimension: int = 1600
    image_jpeg_quality: int = 85
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_admin_usernames(raw: str | None) -> frozenset[str]:
    """Parse the comma-separated admin username list from env."""
    if raw is None:
        return frozenset()
    names: set[str] = set()
    for chunk in raw.split(","):
        value = chunk.strip().lower()
        if value:
            names.add(value)
    return frozenset(names)
