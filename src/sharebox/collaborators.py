"""CollaboratorService — role-scoped grants on files and folders.

Stateless service that receives the collaborator model at construction
and a session at call time. Flushes but never commits.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlmodel import select

from sharebox.exceptions import InconsistentStateError
from sharebox.permissions import ResourceKind, Role
from sharebox.utils import as_utc, utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from sharebox.models.collaborators import CollaboratorBase

logger = logging.getLogger(__name__)


class CollaboratorService:
    """Grant CRUD with upsert-on-(resource, user) semantics."""

    def __init__(self, collaborator_model: type[CollaboratorBase]) -> None:
        self._model = collaborator_model

    def _target_column(self, kind: ResourceKind):
        return self._model.file_id if kind is ResourceKind.FILE else self._model.folder_id

    async def add(
        self,
        session: AsyncSession,
        *,
        kind: ResourceKind,
        resource_id: str,
        user_id: str,
        role: str | Role,
        granted_by: str,
        expires_at: datetime | None = None,
    ) -> tuple[CollaboratorBase, bool]:
        """Grant *role* to *user_id*, updating an existing grant if present.

        Returns ``(grant, created)``.
        """
        role = Role.parse(role)
        if user_id == granted_by:
            raise ValueError("Cannot add yourself as a collaborator")
        if expires_at is not None:
            expires_at = as_utc(expires_at)

        column = self._target_column(kind)
        result = await session.execute(
            select(self._model).where(column == resource_id, self._model.user_id == user_id)
        )
        existing = list(result.scalars().all())
        if len(existing) > 1:
            logger.error(
                "Inconsistent state: %d grants for user %s on %s %s",
                len(existing),
                user_id,
                kind.value,
                resource_id,
            )
            raise InconsistentStateError(
                f"Multiple grants for user {user_id} on {kind.value} {resource_id}"
            )

        if existing:
            grant = existing[0]
            grant.role = role.value
            grant.expires_at = expires_at
            grant.granted_by = granted_by
            grant.updated_at = utc_now()
            await session.flush()
            return grant, False

        grant = self._model(
            user_id=user_id,
            role=role.value,
            granted_by=granted_by,
            expires_at=expires_at,
            file_id=resource_id if kind is ResourceKind.FILE else None,
            folder_id=resource_id if kind is ResourceKind.FOLDER else None,
        )
        session.add(grant)
        await session.flush()
        return grant, True

    async def get(self, session: AsyncSession, grant_id: str) -> CollaboratorBase | None:
        return await session.get(self._model, grant_id)

    async def update(
        self,
        session: AsyncSession,
        grant: CollaboratorBase,
        *,
        role: str | Role | None = None,
        expires_at: datetime | None = None,
        clear_expiry: bool = False,
    ) -> CollaboratorBase:
        if role is not None:
            grant.role = Role.parse(role).value
        if clear_expiry:
            grant.expires_at = None
        elif expires_at is not None:
            grant.expires_at = as_utc(expires_at)
        grant.updated_at = utc_now()
        await session.flush()
        return grant

    async def remove(self, session: AsyncSession, grant: CollaboratorBase) -> None:
        await session.delete(grant)
        await session.flush()

    async def list_for(
        self, session: AsyncSession, kind: ResourceKind, resource_id: str
    ) -> list[CollaboratorBase]:
        """All grants on one resource, expired ones included."""
        result = await session.execute(
            select(self._model)
            .where(self._target_column(kind) == resource_id)
            .order_by(self._model.created_at)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())

    async def shared_with(
        self,
        session: AsyncSession,
        user_id: str,
        kind: ResourceKind | None = None,
        now: datetime | None = None,
    ) -> list[CollaboratorBase]:
        """Non-expired grants held by *user_id*."""
        now = now or utc_now()
        model = self._model
        stmt = select(model).where(model.user_id == user_id)
        if kind is ResourceKind.FILE:
            stmt = stmt.where(model.file_id.is_not(None))  # type: ignore[union-attr]
        elif kind is ResourceKind.FOLDER:
            stmt = stmt.where(model.folder_id.is_not(None))  # type: ignore[union-attr]
        result = await session.execute(stmt.order_by(model.created_at))  # type: ignore[arg-type]
        return [grant for grant in result.scalars().all() if not grant.is_expired(now)]

    async def delete_for_resources(
        self,
        session: AsyncSession,
        *,
        file_ids: list[str] | None = None,
        folder_ids: list[str] | None = None,
    ) -> int:
        """Delete every grant on the given files and folders (used by purge)."""
        deleted = 0
        model = self._model
        if file_ids:
            result = await session.execute(
                sa_delete(model).where(model.file_id.in_(file_ids))  # type: ignore[union-attr]
            )
            deleted += result.rowcount  # type: ignore[union-attr]
        if folder_ids:
            result = await session.execute(
                sa_delete(model).where(model.folder_id.in_(folder_ids))  # type: ignore[union-attr]
            )
            deleted += result.rowcount  # type: ignore[union-attr]
        return deleted

    async def sweep_expired(self, session: AsyncSession, now: datetime | None = None) -> int:
        """Delete grants whose expiry has passed. Returns the count removed."""
        now = now or utc_now()
        model = self._model
        result = await session.execute(
            sa_delete(model).where(
                model.expires_at.is_not(None),  # type: ignore[union-attr]
                model.expires_at <= now,  # type: ignore[operator]
            )
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount  # type: ignore[union-attr]
        if count:
            logger.info("Removed %d expired collaborator grants", count)
        return count
