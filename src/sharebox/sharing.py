"""ShareLinkService — capability tokens for anonymous access.

Access is evaluated fresh on every attempt, in a fixed order::

    not_found -> inactive -> expired -> quota_exhausted
              -> password_required -> password_invalid -> granted

Counters are never read-modify-written: views and downloads are
single-statement increments, and a download bumps the link and the file
inside the caller's transaction, guarded by the accessibility predicate so
concurrent attempts cannot over-grant a quota.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from passlib.context import CryptContext
from sqlalchemy import delete as sa_delete
from sqlalchemy import or_, update
from sqlmodel import select

from sharebox.config import MIN_SHARE_TOKEN_BYTES
from sharebox.exceptions import InconsistentStateError, NotFoundError
from sharebox.permissions import SharePermission
from sharebox.types import AccessDecision, DenialReason, SharedAsset, SharedEntry
from sharebox.utils import as_utc, utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from sharebox.models.files import FileBase
    from sharebox.models.folders import FolderBase
    from sharebox.models.shares import ShareLinkBase

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def generate_share_token(nbytes: int = MIN_SHARE_TOKEN_BYTES) -> str:
    """URL-safe token from *nbytes* of CSPRNG output."""
    if nbytes < MIN_SHARE_TOKEN_BYTES:
        raise ValueError(f"Share tokens need at least {MIN_SHARE_TOKEN_BYTES} bytes of entropy")
    return secrets.token_urlsafe(nbytes)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check of *password* against a stored hash."""
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        logger.warning("Unreadable share link password hash", exc_info=True)
        return False


def evaluate_link(
    link: ShareLinkBase | None,
    password: str | None = None,
    now: datetime | None = None,
) -> AccessDecision:
    """Pure accessibility check for an already-resolved link."""
    if link is None:
        return AccessDecision.deny(DenialReason.NOT_FOUND)
    if not link.is_active:
        return AccessDecision.deny(DenialReason.INACTIVE, link)
    if link.is_expired(now):
        return AccessDecision.deny(DenialReason.EXPIRED, link)
    if link.is_quota_exhausted():
        return AccessDecision.deny(DenialReason.QUOTA_EXHAUSTED, link)
    if link.password_hash is not None:
        if not password:
            return AccessDecision.deny(DenialReason.PASSWORD_REQUIRED, link)
        if not verify_password(password, link.password_hash):
            return AccessDecision.deny(DenialReason.PASSWORD_INVALID, link)
    return AccessDecision.grant(link)


class ShareLinkService:
    """Share link CRUD plus the grant engine. Flushes but never commits."""

    def __init__(
        self,
        link_model: type[ShareLinkBase],
        file_model: type[FileBase],
        folder_model: type[FolderBase],
    ) -> None:
        self._link_model = link_model
        self._file_model = file_model
        self._folder_model = folder_model

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def _token_exists(self, session: AsyncSession, token: str) -> bool:
        model = self._link_model
        result = await session.execute(select(model.id).where(model.token == token))
        return result.first() is not None

    async def _unique_token(self, session: AsyncSession, nbytes: int, attempts: int) -> str:
        for attempt in range(1, attempts + 1):
            token = generate_share_token(nbytes)
            if not await self._token_exists(session, token):
                return token
            logger.warning("Share token collision, regenerating (attempt %d)", attempt)
        raise InconsistentStateError(f"No unique share token after {attempts} attempts")

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        *,
        owner_id: str,
        file_id: str | None = None,
        folder_id: str | None = None,
        password: str | None = None,
        expires_at: datetime | None = None,
        max_downloads: int = 0,
        permission: str | SharePermission = SharePermission.VIEW,
        allow_download: bool = True,
        description: str = "",
        token_bytes: int = MIN_SHARE_TOKEN_BYTES,
        token_attempts: int = 5,
    ) -> ShareLinkBase:
        if (file_id is None) == (folder_id is None):
            raise ValueError("A share link targets exactly one of file_id or folder_id")
        if max_downloads < 0:
            raise ValueError("max_downloads must be >= 0 (0 means unlimited)")
        permission = SharePermission.parse(permission)

        link = self._link_model(
            owner_id=owner_id,
            file_id=file_id,
            folder_id=folder_id,
            token=await self._unique_token(session, token_bytes, token_attempts),
            password_hash=hash_password(password) if password else None,
            permission=permission.value,
            allow_download=allow_download,
            max_downloads=max_downloads,
            description=description,
            expires_at=as_utc(expires_at) if expires_at is not None else None,
        )
        session.add(link)
        await session.flush()
        return link

    async def get_owned(self, session: AsyncSession, owner_id: str, link_id: str) -> ShareLinkBase:
        link = await session.get(self._link_model, link_id)
        if link is None or link.owner_id != owner_id:
            raise NotFoundError(f"Share link not found: {link_id}")
        return link

    async def update(
        self,
        session: AsyncSession,
        link: ShareLinkBase,
        *,
        password: str | None = None,
        clear_password: bool = False,
        expires_at: datetime | None = None,
        clear_expiry: bool = False,
        max_downloads: int | None = None,
        permission: str | SharePermission | None = None,
        allow_download: bool | None = None,
        is_active: bool | None = None,
        description: str | None = None,
    ) -> ShareLinkBase:
        if clear_password:
            link.password_hash = None
        elif password:
            link.password_hash = hash_password(password)
        if clear_expiry:
            link.expires_at = None
        elif expires_at is not None:
            link.expires_at = as_utc(expires_at)
        if max_downloads is not None:
            if max_downloads < 0:
                raise ValueError("max_downloads must be >= 0 (0 means unlimited)")
            link.max_downloads = max_downloads
        if permission is not None:
            link.permission = SharePermission.parse(permission).value
        if allow_download is not None:
            link.allow_download = allow_download
        if is_active is not None:
            link.is_active = is_active
        if description is not None:
            link.description = description
        link.updated_at = utc_now()
        await session.flush()
        return link

    async def delete(self, session: AsyncSession, link: ShareLinkBase) -> None:
        await session.delete(link)
        await session.flush()

    async def list_links(
        self,
        session: AsyncSession,
        owner_id: str,
        *,
        file_id: str | None = None,
        folder_id: str | None = None,
    ) -> list[ShareLinkBase]:
        model = self._link_model
        stmt = select(model).where(model.owner_id == owner_id)
        if file_id is not None:
            stmt = stmt.where(model.file_id == file_id)
        if folder_id is not None:
            stmt = stmt.where(model.folder_id == folder_id)
        result = await session.execute(stmt.order_by(model.created_at.desc()))  # type: ignore[union-attr]
        return list(result.scalars().all())

    async def delete_for_resources(
        self,
        session: AsyncSession,
        *,
        file_ids: list[str] | None = None,
        folder_ids: list[str] | None = None,
    ) -> int:
        """Delete every link on the given files and folders (used by purge)."""
        model = self._link_model
        deleted = 0
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

    # ------------------------------------------------------------------
    # Grant engine
    # ------------------------------------------------------------------

    async def lookup(self, session: AsyncSession, token: str) -> ShareLinkBase | None:
        if not token:
            return None
        model = self._link_model
        result = await session.execute(select(model).where(model.token == token))
        return result.scalar_one_or_none()

    async def resolve(self, session: AsyncSession, token: str) -> ShareLinkBase:
        """Link for *token*; ``NotFoundError`` if unknown or its target is gone."""
        link = await self.lookup(session, token)
        if link is None or not await self.target_is_live(session, link):
            raise NotFoundError("Share link not found")
        return link

    async def target_is_live(self, session: AsyncSession, link: ShareLinkBase) -> bool:
        """True while the linked file or folder exists and is not trashed."""
        if link.file_id is not None:
            target = await session.get(self._file_model, link.file_id)
        elif link.folder_id is not None:
            target = await session.get(self._folder_model, link.folder_id)
        else:
            return False
        return target is not None and not target.is_trashed

    async def authorize(
        self,
        session: AsyncSession,
        token: str,
        password: str | None = None,
        now: datetime | None = None,
    ) -> AccessDecision:
        link = await self.lookup(session, token)
        if link is None or not await self.target_is_live(session, link):
            return AccessDecision.deny(DenialReason.NOT_FOUND)
        return evaluate_link(link, password, now)

    async def record_view(self, session: AsyncSession, link: ShareLinkBase) -> None:
        """Atomic ``view_count + 1``; refreshes *link*."""
        model = self._link_model
        await session.execute(
            update(model)
            .where(model.id == link.id)
            .values(view_count=model.view_count + 1)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(link)

    async def consume_download(
        self,
        session: AsyncSession,
        link: ShareLinkBase,
        file_id: str,
        now: datetime | None = None,
    ) -> bool:
        """Claim one download slot on *link* and count it on the file.

        The link update only matches while the link is still accessible, so
        a slot is never granted twice.  Returns False when no row matched;
        nothing has been written in that case.
        """
        now = now or utc_now()
        model = self._link_model
        result = await session.execute(
            update(model)
            .where(
                model.id == link.id,
                model.is_active == True,  # noqa: E712
                or_(
                    model.max_downloads == 0,
                    model.download_count < model.max_downloads,
                ),
                or_(
                    model.expires_at.is_(None),  # type: ignore[union-attr]
                    model.expires_at > now,  # type: ignore[operator]
                ),
            )
            .values(download_count=model.download_count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:  # type: ignore[union-attr]
            await session.refresh(link)
            return False

        file_model = self._file_model
        await session.execute(
            update(file_model)
            .where(file_model.id == file_id)
            .values(download_count=file_model.download_count + 1)
            .execution_options(synchronize_session=False)
        )
        await session.refresh(link)
        return True

    async def resolve_download_file(
        self, session: AsyncSession, link: ShareLinkBase, file_id: str | None
    ) -> FileBase | None:
        """File a download through *link* may deliver, or None.

        File links deliver their own file.  Folder links deliver *file_id*
        only when it is a live file somewhere inside the shared subtree.
        """
        if link.file_id is not None:
            if file_id is not None and file_id != link.file_id:
                return None
            file = await session.get(self._file_model, link.file_id)
            return file if file is not None and not file.is_trashed else None

        if file_id is None:
            return None
        file = await session.get(self._file_model, file_id)
        if file is None or file.is_trashed:
            return None

        seen: set[str] = set()
        current = file.folder_id
        while current is not None and current not in seen:
            if current == link.folder_id:
                return file
            seen.add(current)
            folder = await session.get(self._folder_model, current)
            if folder is None or folder.is_trashed:
                return None
            current = folder.parent_id
        return None

    async def build_asset(
        self,
        session: AsyncSession,
        link: ShareLinkBase,
        shared_by: str | None = None,
    ) -> SharedAsset:
        """Public projection of the link's target."""
        asset = SharedAsset(
            token=link.token,
            kind="file" if link.file_id is not None else "folder",
            name="",
            permission=link.permission,
            allow_download=link.allow_download,
            has_password=link.has_password,
            view_count=link.view_count,
            download_count=link.download_count,
            max_downloads=link.max_downloads,
            expires_at=link.expires_at,
            description=link.description,
            shared_by=shared_by,
        )

        if link.file_id is not None:
            file = await session.get(self._file_model, link.file_id)
            if file is None:
                raise NotFoundError("Share link not found")
            asset.name = file.original_name
            asset.size_bytes = file.size_bytes
            asset.content_type = file.content_type
            return asset

        folder = await session.get(self._folder_model, link.folder_id)
        if folder is None:
            raise NotFoundError("Share link not found")
        asset.name = folder.name

        folder_model = self._folder_model
        file_model = self._file_model
        folders = await session.execute(
            select(folder_model)
            .where(
                folder_model.parent_id == folder.id,
                folder_model.is_trashed == False,  # noqa: E712
            )
            .order_by(folder_model.name)
        )
        files = await session.execute(
            select(file_model)
            .where(
                file_model.folder_id == folder.id,
                file_model.is_trashed == False,  # noqa: E712
            )
            .order_by(file_model.original_name)
        )
        asset.entries = [
            SharedEntry(id=child.id, name=child.name, is_folder=True)
            for child in folders.scalars().all()
        ] + [
            SharedEntry(
                id=f.id,
                name=f.original_name,
                is_folder=False,
                size_bytes=f.size_bytes,
                content_type=f.content_type,
            )
            for f in files.scalars().all()
        ]
        return asset
