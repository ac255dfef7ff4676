"""ShareboxSettings — environment-driven configuration."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SHARE_TOKEN_BYTES = 32
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ShareboxSettings(BaseSettings):
    """Runtime configuration, read from ``SHAREBOX_*`` environment variables.

    Values may also come from a ``.env`` file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHAREBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = "sqlite+aiosqlite:///./sharebox.db"

    # Storage backend
    storage_driver: Literal["local", "s3"] = "local"
    local_storage_path: str = "./uploads"
    s3_bucket: str | None = None
    s3_region: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_endpoint: str | None = None

    presign_ttl_seconds: int = Field(default=900, gt=0)
    storage_timeout_seconds: float | None = Field(default=30.0, gt=0)
    """Default deadline for object store calls. ``None`` disables it."""

    # Uploads
    max_upload_size: int = Field(default=100 * 1024 * 1024, gt=0)
    upload_concurrency: int = Field(default=8, ge=1)

    # Trash
    trash_retention_days: int = Field(default=30, ge=0)

    # Share links
    share_token_bytes: int = Field(default=MIN_SHARE_TOKEN_BYTES, ge=MIN_SHARE_TOKEN_BYTES)
    token_retry_attempts: int = Field(default=5, ge=1)
    allow_editor_share_links: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT


@lru_cache
def get_settings() -> ShareboxSettings:
    """Process-wide settings loaded once from the environment."""
    return ShareboxSettings()


def configure_logging(settings: ShareboxSettings) -> None:
    """Opt-in logging setup for applications embedding Sharebox.

    The library itself only creates module loggers; this installs a root
    handler with the configured level and format.
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {settings.log_level!r}")
    logging.basicConfig(level=level, format=settings.log_format)
    logging.getLogger("sharebox").setLevel(level)
