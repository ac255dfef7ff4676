"""Folder model — one node of a user's folder tree.

``path`` is a materialized path (``/docs/2024``) derived from the parent
chain; ``parent_id`` is the authoritative adjacency.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class FolderBase(SQLModel):
    """Base fields for a folder. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    owner_id: str = Field(index=True)
    parent_id: str | None = Field(default=None, foreign_key="sharebox_folders.id", index=True)
    name: str
    path: str = Field(index=True)
    color: str = Field(default="")
    is_trashed: bool = Field(default=False, index=True)
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


class Folder(FolderBase, table=True):
    """Default folder table — ``sharebox_folders``."""

    __tablename__ = "sharebox_folders"
