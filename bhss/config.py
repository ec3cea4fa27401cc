"""
Configuration and settings for the BHSS backend.
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
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Database (Postgres expected; SQLite URLs work for local runs)
    database_url: Optional[str] = Field(default=None)

    # Uploaded binaries on local disk
    upload_dir: str = Field(default="uploads")

    # S3-compatible storage (Tencent COS); takes precedence over upload_dir
    cos_endpoint: Optional[str] = Field(default=None)
    cos_region: Optional[str] = Field(default=None)
    cos_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="BHSS_USE_IN_MEMORY_BACKENDS"
    )

    # Live feed fan-out across worker processes (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None)
    redis_channel: str = Field(default="bhss:live")

    # Auth
    jwt_secret: str = Field(default="dev-secret-change-me")
    jwt_expires_days: int = Field(default=7)

    # Web push (VAPID)
    vapid_public_key: str = Field(default="")
    vapid_private_key: str = Field(default="")
    vapid_subject: str = Field(default="mailto:admin@example.com")

    @property
    def push_enabled(self) -> bool:
        return bool(self.vapid_public_key and self.vapid_private_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
