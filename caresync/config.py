"""
Configuration and settings for the sync core.

Every field can be overridden from the environment with the `CARESYNC_`
prefix, e.g. `CARESYNC_LOCAL_STORE_URL=sqlite:///caresync.db`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the queue, backups and local API."""

    model_config = SettingsConfigDict(
        env_prefix="CARESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_prefix: str = Field(default="/api")

    # Durable local storage (any SQLAlchemy URL, SQLite on-device)
    local_store_url: Optional[str] = Field(default=None)

    # Redis as an alternative local store
    redis_url: Optional[str] = Field(default=None)
    redis_namespace: str = Field(default="caresync:")

    # Remote backend factory as "package.module:attribute"
    remote_backend: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Offline queue
    queue_storage_key: str = Field(default="offline_queue")
    max_attempts: int = Field(default=3, ge=1)
    sync_interval_seconds: float = Field(default=30.0, gt=0)
    queue_max_age_seconds: float = Field(default=7 * 24 * 60 * 60, gt=0)

    # Backups and checkpoints
    backup_interval_seconds: float = Field(default=30 * 60, gt=0)
    checkpoint_interval_seconds: float = Field(default=10 * 60, gt=0)
    max_backups: int = Field(default=5, ge=1)
    max_checkpoints: int = Field(default=10, ge=1)

    # Retry executor defaults (seconds)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=10.0, ge=0)
    retry_backoff_factor: float = Field(default=2.0, ge=1)

    app_version: str = Field(default="1.0.0")
    schema_version: str = Field(default="1.0.0")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
