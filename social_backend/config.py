"""
Configuration and settings for the social backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)
    database_timeout_seconds: int = Field(default=5, ge=1)

    # Identity provider (Clerk)
    clerk_secret_key: Optional[str] = Field(default=None)
    clerk_publishable_key: Optional[str] = Field(default=None)
    clerk_api_url: str = Field(default="https://api.clerk.com/v1")
    identity_timeout_seconds: float = Field(default=5.0, gt=0)

    # S3-compatible storage for profile images
    storage_endpoint: Optional[str] = Field(default=None)
    storage_region: Optional[str] = Field(default=None)
    storage_bucket: Optional[str] = Field(default=None)
    storage_public_base_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    upload_url_expires_seconds: int = Field(default=900, ge=60, le=86400)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
