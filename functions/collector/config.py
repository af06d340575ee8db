"""
Configuration and settings for the marketplace service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # S3-compatible object storage
    storage_endpoint: Optional[str] = Field(default=None, env="STORAGE_ENDPOINT")
    storage_region: Optional[str] = Field(default=None, env="STORAGE_REGION")
    storage_public_base_url: str = Field(
        default="https://storage.example.test/storage/v1/object/public",
        env="STORAGE_PUBLIC_BASE_URL",
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Hosted multimodal model and card data providers
    gemini_api_key: Optional[str] = Field(default=None, env="GEMINI_API_KEY")
    justtcg_api_key: Optional[str] = Field(default=None, env="JUSTTCG_API_KEY")
    google_vision_api_key: Optional[str] = Field(
        default=None, env="GOOGLE_VISION_API_KEY"
    )
    request_timeout: float = Field(default=30, env="REQUEST_TIMEOUT")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="COLLECTOR_USE_IN_MEMORY_BACKENDS"
    )

    # Realtime pub/sub (Redis)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    redis_channel_prefix: str = Field(
        default="collector", env="REDIS_CHANNEL_PREFIX"
    )

    # Marketplace timings
    offer_ttl_hours: float = Field(default=48, env="OFFER_TTL_HOURS")
    card_cache_ttl_seconds: float = Field(
        default=24 * 60 * 60, env="CARD_CACHE_TTL_SECONDS"
    )
    expiry_poll_seconds: float = Field(default=60, env="EXPIRY_POLL_SECONDS")

    @property
    def offer_ttl_seconds(self) -> float:
        return self.offer_ttl_hours * 60 * 60


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
