"""Roles, principals and the collaboration/permission resolver.

``can_access`` is a pure decision over an ``AccessTarget``; the
``PermissionService`` loads that target (resource, ancestor-folder grants)
from the database and then delegates to it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import or_
from sqlmodel import select

from sharebox.exceptions import ForbiddenError, InconsistentStateError, NotFoundError
from sharebox.utils import utc_now

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from sharebox.models.collaborators import CollaboratorBase
    from sharebox.models.files import FileBase
    from sharebox.models.folders import FolderBase

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Collaborator role, ordered ``viewer < commenter < editor``."""

    VIEWER = "viewer"
    COMMENTER = "commenter"
    EDITOR = "editor"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def covers(self, required: Role) -> bool:
        """True if this role is at least *required*."""
        return self.rank >= required.rank

    @classmethod
    def parse(cls, value: str | Role) -> Role:
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Invalid role: {value!r}. Must be one of "
                f"{', '.join(r.value for r in cls)}."
            ) from None


_ROLE_RANK = {Role.VIEWER: 0, Role.COMMENTER: 1, Role.EDITOR: 2}


class SharePermission(str, Enum):
    """Permission carried by a share link."""

    VIEW = "view"
    COMMENT = "comment"
    EDIT = "edit"

    @classmethod
    def parse(cls, value: str | SharePermission) -> SharePermission:
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Invalid share permission: {value!r}. Must be one of "
                f"{', '.join(p.value for p in cls)}."
            ) from None


class ResourceKind(str, Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class Principal:
    """Identity supplied by the caller's authentication layer.

    ``user_id`` is ``None`` for anonymous access.
    """

    user_id: str | None = None

    @classmethod
    def anonymous(cls) -> Principal:
        return cls(user_id=None)

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


@dataclass
class AccessTarget:
    """Everything the resolver needs to know about one resource."""

    kind: ResourceKind
    id: str
    owner_id: str
    is_public: bool = False
    is_trashed: bool = False
    grants: list[CollaboratorBase] = field(default_factory=list)


# =============================================================================
# Pure decision functions
# =============================================================================


def effective_grant(
    grants: Iterable[CollaboratorBase],
    user_id: str,
    now: datetime | None = None,
) -> CollaboratorBase | None:
    """Most permissive non-expired grant held by *user_id*.

    More than one grant for the same user on the same resource violates the
    upsert invariant; it is logged as an inconsistency and the most
    permissive grant wins.
    """
    now = now or utc_now()
    per_resource: dict[tuple[str | None, str | None], list[CollaboratorBase]] = (
        defaultdict(list)
    )
    for grant in grants:
        if grant.user_id == user_id:
            per_resource[(grant.file_id, grant.folder_id)].append(grant)

    best: CollaboratorBase | None = None
    for (file_id, folder_id), found in per_resource.items():
        if len(found) > 1:
            logger.error(
                "Inconsistent state: %d grants for user %s on file=%s folder=%s",
                len(found),
                user_id,
                file_id,
                folder_id,
            )
        for grant in found:
            if grant.is_expired(now):
                continue
            role = Role.parse(grant.role)
            if best is None or role.rank > Role.parse(best.role).rank:
                best = grant
    return best


def resolve_role(
    principal: Principal, target: AccessTarget, now: datetime | None = None
) -> Role | None:
    """Role *principal* holds on *target* through collaborator grants.

    Owners and public access are not roles; see ``can_access``.
    """
    if principal.user_id is None or target.is_trashed:
        return None
    grant = effective_grant(target.grants, principal.user_id, now)
    return Role.parse(grant.role) if grant is not None else None


def can_access(
    principal: Principal,
    target: AccessTarget,
    required: Role = Role.VIEWER,
    now: datetime | None = None,
) -> bool:
    """Decide whether *principal* may act on *target* with *required* role.

    - The owner always passes.
    - Trashed resources are visible to the owner only.
    - A non-expired grant passes when its role covers *required*.
    - Public resources pass for viewer access, including anonymous.
    """
    if principal.user_id is not None and principal.user_id == target.owner_id:
        return True
    if target.is_trashed:
        return False
    if target.is_public and required is Role.VIEWER:
        return True
    role = resolve_role(principal, target, now)
    return role is not None and role.covers(required)


# =============================================================================
# PermissionService
# =============================================================================


class PermissionService:
    """Loads access targets from the database and applies ``can_access``.

    Grants on a folder cover its whole subtree, so a target's grants include
    those on every ancestor folder.
    """

    def __init__(
        self,
        file_model: type[FileBase],
        folder_model: type[FolderBase],
        collaborator_model: type[CollaboratorBase],
    ) -> None:
        self._file_model = file_model
        self._folder_model = folder_model
        self._collaborator_model = collaborator_model

    async def _ancestor_ids(self, session: AsyncSession, folder_id: str | None) -> list[str]:
        """Folder ids from *folder_id* up to the root, nearest first."""
        ids: list[str] = []
        seen: set[str] = set()
        current = folder_id
        while current is not None:
            if current in seen:
                raise InconsistentStateError(f"Folder cycle detected at {current}")
            seen.add(current)
            folder = await session.get(self._folder_model, current)
            if folder is None:
                break
            ids.append(folder.id)
            current = folder.parent_id
        return ids

    async def load_target(
        self, session: AsyncSession, kind: ResourceKind, resource_id: str
    ) -> AccessTarget | None:
        """Build the ``AccessTarget`` for a file or folder, or None if absent."""
        model = self._collaborator_model
        if kind is ResourceKind.FILE:
            file = await session.get(self._file_model, resource_id)
            if file is None:
                return None
            folder_ids = await self._ancestor_ids(session, file.folder_id)
            condition = model.file_id == file.id
            if folder_ids:
                condition = or_(condition, model.folder_id.in_(folder_ids))  # type: ignore[union-attr]
            target = AccessTarget(
                kind=kind,
                id=file.id,
                owner_id=file.owner_id,
                is_public=file.is_public,
                is_trashed=file.is_trashed,
            )
        else:
            folder = await session.get(self._folder_model, resource_id)
            if folder is None:
                return None
            folder_ids = await self._ancestor_ids(session, folder.id)
            condition = model.folder_id.in_(folder_ids)  # type: ignore[union-attr]
            target = AccessTarget(
                kind=kind,
                id=folder.id,
                owner_id=folder.owner_id,
                is_trashed=folder.is_trashed,
            )

        result = await session.execute(select(model).where(condition))
        target.grants = list(result.scalars().all())
        return target

    async def can_access(
        self,
        session: AsyncSession,
        principal: Principal,
        kind: ResourceKind,
        resource_id: str,
        required: Role = Role.VIEWER,
    ) -> bool:
        target = await self.load_target(session, kind, resource_id)
        return target is not None and can_access(principal, target, required)

    async def require(
        self,
        session: AsyncSession,
        principal: Principal,
        kind: ResourceKind,
        resource_id: str,
        required: Role = Role.VIEWER,
    ) -> AccessTarget:
        """Return the target or raise.

        Raises ``NotFoundError`` when the resource is absent or invisible to
        the principal, and ``ForbiddenError`` when it is visible but the
        principal's role is insufficient.
        """
        target = await self.load_target(session, kind, resource_id)
        if target is None or not can_access(principal, target, Role.VIEWER):
            raise NotFoundError(f"{kind.value.capitalize()} not found: {resource_id}")
        if not can_access(principal, target, required):
            raise ForbiddenError(
                f"{required.value} access required on {kind.value} {resource_id}"
            )
        return target
