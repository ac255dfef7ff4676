"""TrashService — soft-delete, restore and purge over folder subtrees.

Every operation runs inside the caller's transaction; the facade commits
once per operation, so a subtree is trashed or restored all-or-nothing.
Folder trash stamps the whole live subtree with one ``trashed_at``, and a
folder restore brings back exactly the items carrying that stamp.

Purge removes metadata only.  The storage keys of purged files are returned
in ``PurgeResult.storage_keys`` so the caller can delete the objects after
the transaction commits.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlmodel import select

from sharebox.exceptions import NotFoundError
from sharebox.types import FileInfo, FolderInfo, PurgeResult, TrashListing, TrashResult
from sharebox.utils import as_utc, path_depth, utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from sharebox.collaborators import CollaboratorService
    from sharebox.folders import FolderService
    from sharebox.models.files import FileBase
    from sharebox.models.folders import FolderBase
    from sharebox.sharing import ShareLinkService

logger = logging.getLogger(__name__)


def _same_stamp(a: datetime | None, b: datetime | None) -> bool:
    if a is None or b is None:
        return False
    return as_utc(a) == as_utc(b)


class TrashService:
    """Trash lifecycle manager. Flushes but never commits."""

    def __init__(
        self,
        file_model: type[FileBase],
        folder_model: type[FolderBase],
        folders: FolderService,
        links: ShareLinkService,
        collaborators: CollaboratorService,
    ) -> None:
        self._file_model = file_model
        self._folder_model = folder_model
        self._folders = folders
        self._links = links
        self._collaborators = collaborators

    async def _get_file(self, session: AsyncSession, owner_id: str, file_id: str) -> FileBase:
        file = await session.get(self._file_model, file_id)
        if file is None or file.owner_id != owner_id:
            raise NotFoundError(f"File not found: {file_id}")
        return file

    async def _live_parent_id(self, session: AsyncSession, folder_id: str | None) -> str | None:
        """*folder_id* if it is a live folder, else None (restore to root)."""
        if folder_id is None:
            return None
        parent = await session.get(self._folder_model, folder_id)
        if parent is None or parent.is_trashed:
            return None
        return parent.id

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    async def trash_file(
        self, session: AsyncSession, owner_id: str, file_id: str, now: datetime | None = None
    ) -> TrashResult:
        file = await self._get_file(session, owner_id, file_id)
        if file.is_trashed:
            return TrashResult(
                success=True,
                message="File is already in trash",
                trashed_at=file.trashed_at,
            )
        now = now or utc_now()
        file.is_trashed = True
        file.trashed_at = now
        file.updated_at = now
        await session.flush()
        return TrashResult(
            success=True, message="File moved to trash", files_affected=1, trashed_at=now
        )

    async def trash_folder(
        self, session: AsyncSession, owner_id: str, folder_id: str, now: datetime | None = None
    ) -> TrashResult:
        """Trash a folder and its whole live subtree with one timestamp."""
        folder = await self._folders.get_owned(
            session, owner_id, folder_id, include_trashed=True
        )
        if folder.is_trashed:
            return TrashResult(
                success=True,
                message="Folder is already in trash",
                trashed_at=folder.trashed_at,
            )

        now = now or utc_now()
        folders, files = await self._folders.collect_subtree(
            session, folder, descend=lambda f: not f.is_trashed
        )
        for f in folders:
            f.is_trashed = True
            f.trashed_at = now
            f.updated_at = now
        live_files = [f for f in files if not f.is_trashed]
        for f in live_files:
            f.is_trashed = True
            f.trashed_at = now
            f.updated_at = now
        await session.flush()

        logger.info(
            "Trashed folder %s: %d folders, %d files", folder.path, len(folders), len(live_files)
        )
        return TrashResult(
            success=True,
            message="Folder moved to trash",
            files_affected=len(live_files),
            folders_affected=len(folders),
            trashed_at=now,
        )

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_file(
        self, session: AsyncSession, owner_id: str, file_id: str
    ) -> TrashResult:
        file = await self._get_file(session, owner_id, file_id)
        if not file.is_trashed:
            raise NotFoundError(f"File is not in trash: {file_id}")

        now = utc_now()
        file.folder_id = await self._live_parent_id(session, file.folder_id)
        file.is_trashed = False
        file.trashed_at = None
        file.updated_at = now
        await session.flush()
        return TrashResult(success=True, message="File restored", files_affected=1)

    async def restore_folder(
        self, session: AsyncSession, owner_id: str, folder_id: str
    ) -> TrashResult:
        """Restore a folder and the descendants trashed together with it."""
        folder = await self._folders.get_owned(
            session, owner_id, folder_id, include_trashed=True
        )
        if not folder.is_trashed:
            raise NotFoundError(f"Folder is not in trash: {folder_id}")

        stamp = folder.trashed_at
        parent_id = await self._live_parent_id(session, folder.parent_id)
        await self._folders.ensure_no_sibling_conflict(
            session, owner_id, parent_id, folder.name, exclude_id=folder.id
        )

        folders, files = await self._folders.collect_subtree(
            session, folder, descend=lambda f: _same_stamp(f.trashed_at, stamp)
        )
        restored_files = [f for f in files if _same_stamp(f.trashed_at, stamp)]

        now = utc_now()
        for f in folders:
            f.is_trashed = False
            f.trashed_at = None
            f.updated_at = now
        for f in restored_files:
            f.is_trashed = False
            f.trashed_at = None
            f.updated_at = now

        if parent_id != folder.parent_id:
            folder.parent_id = parent_id
            await self._folders.recompute_paths(session, folder)
        await session.flush()

        return TrashResult(
            success=True,
            message="Folder restored",
            files_affected=len(restored_files),
            folders_affected=len(folders),
        )

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    async def _purge_records(
        self,
        session: AsyncSession,
        folders: list[FolderBase],
        files: list[FileBase],
        result: PurgeResult,
    ) -> None:
        file_ids = [f.id for f in files]
        folder_ids = [f.id for f in folders]
        await self._links.delete_for_resources(session, file_ids=file_ids, folder_ids=folder_ids)
        await self._collaborators.delete_for_resources(
            session, file_ids=file_ids, folder_ids=folder_ids
        )

        for file in files:
            result.storage_keys.append(file.storage_key)
            await session.delete(file)
        await session.flush()

        # Children before parents
        for folder in reversed(folders):
            await session.delete(folder)
            await session.flush()

        result.files_deleted += len(files)
        result.folders_deleted += len(folders)

    async def purge_file(
        self, session: AsyncSession, owner_id: str, file_id: str
    ) -> PurgeResult:
        file = await self._get_file(session, owner_id, file_id)
        if not file.is_trashed:
            raise NotFoundError(f"File is not in trash: {file_id}")
        result = PurgeResult(success=True, message="File permanently deleted")
        await self._purge_records(session, [], [file], result)
        return result

    async def purge_folder(
        self, session: AsyncSession, owner_id: str, folder_id: str
    ) -> PurgeResult:
        """Delete a trashed folder and everything beneath it, bottom-up."""
        folder = await self._folders.get_owned(
            session, owner_id, folder_id, include_trashed=True
        )
        if not folder.is_trashed:
            raise NotFoundError(f"Folder is not in trash: {folder_id}")
        result = PurgeResult(success=True, message="Folder permanently deleted")
        folders, files = await self._folders.collect_subtree(session, folder)
        await self._purge_records(session, folders, files, result)
        return result

    async def _purge_trashed(
        self,
        session: AsyncSession,
        *,
        owner_id: str | None = None,
        cutoff: datetime | None = None,
    ) -> PurgeResult:
        """Purge trashed folders (topmost first) and then remaining trashed files."""
        folder_model = self._folder_model
        file_model = self._file_model

        folder_stmt = select(folder_model).where(folder_model.is_trashed == True)  # noqa: E712
        file_stmt = select(file_model).where(file_model.is_trashed == True)  # noqa: E712
        if owner_id is not None:
            folder_stmt = folder_stmt.where(folder_model.owner_id == owner_id)
            file_stmt = file_stmt.where(file_model.owner_id == owner_id)
        if cutoff is not None:
            folder_stmt = folder_stmt.where(folder_model.trashed_at <= cutoff)  # type: ignore[operator]
            file_stmt = file_stmt.where(file_model.trashed_at <= cutoff)  # type: ignore[operator]

        result = PurgeResult(success=True, message="")
        purged_folders: set[str] = set()
        trashed = (await session.execute(folder_stmt)).scalars().all()
        for folder in sorted(trashed, key=lambda f: path_depth(f.path)):
            if folder.id in purged_folders:
                continue
            folders, files = await self._folders.collect_subtree(session, folder)
            purged_folders.update(f.id for f in folders)
            await self._purge_records(session, folders, files, result)

        remaining = (await session.execute(file_stmt)).scalars().all()
        await self._purge_records(session, [], list(remaining), result)
        return result

    async def empty_trash(self, session: AsyncSession, owner_id: str) -> PurgeResult:
        result = await self._purge_trashed(session, owner_id=owner_id)
        result.message = f"Trash emptied: {result.total_deleted} items permanently deleted"
        return result

    async def sweep_expired(self, session: AsyncSession, cutoff: datetime) -> PurgeResult:
        """Purge everything trashed at or before *cutoff*, for all owners."""
        result = await self._purge_trashed(session, cutoff=cutoff)
        result.message = f"Swept {result.total_deleted} expired trash items"
        if result.total_deleted:
            logger.info(
                "Trash sweep purged %d files and %d folders trashed before %s",
                result.files_deleted,
                result.folders_deleted,
                cutoff.isoformat(),
            )
        return result

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_trash(
        self, session: AsyncSession, owner_id: str, *, page: int = 1, limit: int = 50
    ) -> TrashListing:
        """Trashed files and folders, newest first, paginated per kind."""
        page = max(page, 1)
        limit = max(1, min(limit, 100))
        offset = (page - 1) * limit
        file_model = self._file_model
        folder_model = self._folder_model

        file_filter = (file_model.owner_id == owner_id, file_model.is_trashed == True)  # noqa: E712
        folder_filter = (folder_model.owner_id == owner_id, folder_model.is_trashed == True)  # noqa: E712

        total_files = (
            await session.execute(select(func.count()).select_from(file_model).where(*file_filter))
        ).scalar_one()
        total_folders = (
            await session.execute(
                select(func.count()).select_from(folder_model).where(*folder_filter)
            )
        ).scalar_one()

        files = await session.execute(
            select(file_model)
            .where(*file_filter)
            .order_by(file_model.trashed_at.desc())  # type: ignore[union-attr]
            .offset(offset)
            .limit(limit)
        )
        folders = await session.execute(
            select(folder_model)
            .where(*folder_filter)
            .order_by(folder_model.trashed_at.desc())  # type: ignore[union-attr]
            .offset(offset)
            .limit(limit)
        )
        return TrashListing(
            files=[FileInfo.from_model(f) for f in files.scalars().all()],
            folders=[FolderInfo.from_model(f) for f in folders.scalars().all()],
            total_files=total_files,
            total_folders=total_folders,
            page=page,
            page_size=limit,
        )
