"""ShareLink model — capability tokens for anonymous access.

Provides ``ShareLinkBase`` (non-table) and ``ShareLink`` (concrete table).
Exactly one of ``file_id`` / ``folder_id`` is set.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from sharebox.utils import is_past


class ShareLinkBase(SQLModel):
    """Base fields for a share link. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    file_id: str | None = Field(default=None, foreign_key="sharebox_files.id", index=True)
    folder_id: str | None = Field(default=None, foreign_key="sharebox_folders.id", index=True)
    token: str = Field(unique=True, index=True)
    password_hash: str | None = Field(default=None)
    permission: str = Field(default="view")
    allow_download: bool = Field(default=True)
    max_downloads: int = Field(default=0)
    """0 means unlimited."""
    download_count: int = Field(default=0)
    view_count: int = Field(default=0)
    is_active: bool = Field(default=True)
    description: str = Field(default="")
    expires_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),  # type: ignore[invalid-argument-type]
    )

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        return is_past(self.expires_at, now)

    def is_quota_exhausted(self) -> bool:
        return self.max_downloads > 0 and self.download_count >= self.max_downloads

    def is_accessible(self, now: datetime | None = None) -> bool:
        """``is_active and not expired and quota remaining``."""
        return self.is_active and not self.is_expired(now) and not self.is_quota_exhausted()


class ShareLink(ShareLinkBase, table=True):
    """Default share link table — ``sharebox_share_links``."""

    __tablename__ = "sharebox_share_links"
