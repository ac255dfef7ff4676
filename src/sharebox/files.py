"""FileService — file metadata records.

Bytes live in the ``ObjectStore``; this service only touches the
relational side.  Flushes but never commits.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlmodel import select

from sharebox.exceptions import NotFoundError
from sharebox.utils import storage_extension, utc_now, validate_name

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from sharebox.models.files import FileBase
    from sharebox.models.folders import FolderBase


class FileService:
    def __init__(self, file_model: type[FileBase], folder_model: type[FolderBase]) -> None:
        self._file_model = file_model
        self._folder_model = folder_model

    async def get(self, session: AsyncSession, file_id: str) -> FileBase | None:
        return await session.get(self._file_model, file_id)

    async def get_owned(
        self,
        session: AsyncSession,
        owner_id: str,
        file_id: str,
        *,
        include_trashed: bool = False,
    ) -> FileBase:
        file = await session.get(self._file_model, file_id)
        if file is None or file.owner_id != owner_id:
            raise NotFoundError(f"File not found: {file_id}")
        if file.is_trashed and not include_trashed:
            raise NotFoundError(f"File not found: {file_id}")
        return file

    async def require_folder(
        self, session: AsyncSession, owner_id: str, folder_id: str | None
    ) -> None:
        """Ensure *folder_id* is a live folder of *owner_id* (``None`` is the root)."""
        if folder_id is None:
            return
        folder = await session.get(self._folder_model, folder_id)
        if folder is None or folder.owner_id != owner_id or folder.is_trashed:
            raise NotFoundError(f"Folder not found: {folder_id}")

    async def create_record(
        self,
        session: AsyncSession,
        *,
        owner_id: str,
        original_name: str,
        storage_key: str,
        locator: str,
        size_bytes: int,
        content_type: str,
        folder_id: str | None = None,
        is_public: bool = False,
        description: str = "",
        tags: str = "",
    ) -> FileBase:
        """Insert metadata for an object that has already been written."""
        await self.require_folder(session, owner_id, folder_id)
        file = self._file_model(
            owner_id=owner_id,
            folder_id=folder_id,
            original_name=original_name,
            storage_key=storage_key,
            locator=locator,
            size_bytes=size_bytes,
            content_type=content_type,
            extension=storage_extension(original_name),
            is_public=is_public,
            description=description,
            tags=tags,
        )
        session.add(file)
        await session.flush()
        return file

    async def update(
        self,
        session: AsyncSession,
        owner_id: str,
        file_id: str,
        *,
        original_name: str | None = None,
        description: str | None = None,
        tags: str | None = None,
        is_starred: bool | None = None,
    ) -> FileBase:
        file = await self.get_owned(session, owner_id, file_id)
        if original_name is not None:
            original_name = original_name.strip()
            ok, err = validate_name(original_name)
            if not ok:
                raise ValueError(err)
            file.original_name = original_name
        if description is not None:
            file.description = description
        if tags is not None:
            file.tags = tags
        if is_starred is not None:
            file.is_starred = is_starred
        file.updated_at = utc_now()
        await session.flush()
        return file

    async def move(
        self, session: AsyncSession, owner_id: str, file_id: str, folder_id: str | None
    ) -> FileBase:
        file = await self.get_owned(session, owner_id, file_id)
        await self.require_folder(session, owner_id, folder_id)
        file.folder_id = folder_id
        file.updated_at = utc_now()
        await session.flush()
        return file

    async def set_public(
        self, session: AsyncSession, owner_id: str, file_id: str, public: bool
    ) -> FileBase:
        file = await self.get_owned(session, owner_id, file_id)
        file.is_public = public
        file.updated_at = utc_now()
        await session.flush()
        return file

    async def increment_download(self, session: AsyncSession, file_id: str) -> None:
        """Atomic in-place ``download_count + 1``."""
        model = self._file_model
        await session.execute(
            update(model)
            .where(model.id == file_id)
            .values(download_count=model.download_count + 1)
            .execution_options(synchronize_session=False)
        )

    async def list_files(
        self, session: AsyncSession, owner_id: str, folder_id: str | None = None
    ) -> list[FileBase]:
        """Non-trashed files of *owner_id*, optionally limited to one folder."""
        model = self._file_model
        stmt = select(model).where(
            model.owner_id == owner_id,
            model.is_trashed == False,  # noqa: E712
        )
        if folder_id is not None:
            stmt = stmt.where(model.folder_id == folder_id)
        result = await session.execute(stmt.order_by(model.created_at.desc()))  # type: ignore[union-attr]
        return list(result.scalars().all())
