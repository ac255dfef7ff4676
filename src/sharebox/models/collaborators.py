"""Collaborator model — a role-scoped grant of one user on one file or folder."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from sharebox.utils import is_past


class CollaboratorBase(SQLModel):
    """Base fields for a collaborator grant. Subclass with ``table=True`` for a concrete table."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    file_id: str | None = Field(default=None, foreign_key="sharebox_files.id", index=True)
    folder_id: str | None = Field(default=None, foreign_key="sharebox_folders.id", index=True)
    role: str = Field(default="viewer")
    granted_by: str = Field(default="")
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

    def is_expired(self, now: datetime | None = None) -> bool:
        return is_past(self.expires_at, now)


class Collaborator(CollaboratorBase, table=True):
    """Default collaborator table — ``sharebox_collaborators``."""

    __tablename__ = "sharebox_collaborators"
    __table_args__ = (
        UniqueConstraint("file_id", "user_id", name="uq_sharebox_collaborators_file_user"),
        UniqueConstraint("folder_id", "user_id", name="uq_sharebox_collaborators_folder_user"),
    )
