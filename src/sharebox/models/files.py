"""File model — metadata for an uploaded object.

Provides ``FileBase`` (non-table) and ``File`` (concrete table).
Subclass ``FileBase`` with ``table=True`` and a custom ``__tablename__``
to use a different table name.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class FileBase(SQLModel):
    """Base fields for a stored file. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    folder_id: str | None = Field(default=None, foreign_key="sharebox_folders.id", index=True)
    original_name: str = Field(default="")
    storage_key: str = Field(unique=True)
    locator: str = Field(default="")
    size_bytes: int = Field(default=0)
    content_type: str = Field(default="application/octet-stream")
    extension: str = Field(default="")
    description: str = Field(default="")
    tags: str = Field(default="")
    is_public: bool = Field(default=False)
    is_starred: bool = Field(default=False)
    is_trashed: bool = Field(default=False, index=True)
    download_count: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    trashed_at: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )


class File(FileBase, table=True):
    """Default file table — ``sharebox_files``."""

    __tablename__ = "sharebox_files"
