"""FolderService — the folder tree and its materialized paths.

Every folder's ``path`` is ``parent.path + "/" + name`` (``"/" + name`` at
the root).  Renames and moves rewrite the paths of the whole subtree by
walking the ``parent_id`` adjacency breadth-first.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlmodel import select

from sharebox.exceptions import ConflictError, InconsistentStateError, NotFoundError
from sharebox.types import Breadcrumb
from sharebox.utils import is_within, join_folder_path, utc_now, validate_color, validate_name

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from sharebox.models.files import FileBase
    from sharebox.models.folders import FolderBase

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    name = name.strip()
    ok, err = validate_name(name)
    if not ok:
        raise ValueError(err)
    return name


class FolderService:
    """Folder CRUD and tree traversal. Flushes but never commits."""

    def __init__(self, folder_model: type[FolderBase], file_model: type[FileBase]) -> None:
        self._folder_model = folder_model
        self._file_model = file_model

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_owned(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        *,
        include_trashed: bool = False,
    ) -> FolderBase:
        """Folder owned by *owner_id*; ``NotFoundError`` otherwise."""
        folder = await session.get(self._folder_model, folder_id)
        if folder is None or folder.owner_id != owner_id:
            raise NotFoundError(f"Folder not found: {folder_id}")
        if folder.is_trashed and not include_trashed:
            raise NotFoundError(f"Folder not found: {folder_id}")
        return folder

    async def ensure_no_sibling_conflict(
        self,
        session: AsyncSession,
        owner_id: str,
        parent_id: str | None,
        name: str,
        *,
        exclude_id: str | None = None,
    ) -> None:
        """Raise ``ConflictError`` if a live sibling already uses *name*."""
        model = self._folder_model
        stmt = select(model.id).where(
            model.owner_id == owner_id,
            model.name == name,
            model.is_trashed == False,  # noqa: E712
        )
        if parent_id is None:
            stmt = stmt.where(model.parent_id.is_(None))  # type: ignore[union-attr]
        else:
            stmt = stmt.where(model.parent_id == parent_id)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        result = await session.execute(stmt.limit(1))
        if result.first() is not None:
            raise ConflictError(f"A folder named {name!r} already exists here")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        session: AsyncSession,
        owner_id: str,
        name: str,
        *,
        parent_id: str | None = None,
        color: str = "",
    ) -> FolderBase:
        name = _clean_name(name)
        ok, err = validate_color(color)
        if not ok:
            raise ValueError(err)

        parent_path: str | None = None
        if parent_id is not None:
            parent = await self.get_owned(session, owner_id, parent_id)
            parent_path = parent.path

        await self.ensure_no_sibling_conflict(session, owner_id, parent_id, name)

        folder = self._folder_model(
            owner_id=owner_id,
            parent_id=parent_id,
            name=name,
            path=join_folder_path(parent_path, name),
            color=color,
        )
        session.add(folder)
        await session.flush()
        return folder

    async def rename(
        self, session: AsyncSession, owner_id: str, folder_id: str, name: str
    ) -> FolderBase:
        folder = await self.get_owned(session, owner_id, folder_id)
        name = _clean_name(name)
        if name == folder.name:
            return folder

        await self.ensure_no_sibling_conflict(
            session, owner_id, folder.parent_id, name, exclude_id=folder.id
        )
        folder.name = name
        await self.recompute_paths(session, folder)
        return folder

    async def set_color(
        self, session: AsyncSession, owner_id: str, folder_id: str, color: str
    ) -> FolderBase:
        ok, err = validate_color(color)
        if not ok:
            raise ValueError(err)
        folder = await self.get_owned(session, owner_id, folder_id)
        folder.color = color
        folder.updated_at = utc_now()
        await session.flush()
        return folder

    async def move(
        self,
        session: AsyncSession,
        owner_id: str,
        folder_id: str,
        parent_id: str | None,
    ) -> FolderBase:
        """Reparent a folder, rejecting moves into its own subtree."""
        folder = await self.get_owned(session, owner_id, folder_id)
        if parent_id == folder.parent_id:
            return folder
        if parent_id == folder.id:
            raise ConflictError("Cannot move a folder into itself")

        if parent_id is not None:
            destination = await self.get_owned(session, owner_id, parent_id)
            if is_within(destination.path, folder.path):
                raise ConflictError("Cannot move a folder into its own subfolder")
            subtree, _ = await self.collect_subtree(session, folder, include_files=False)
            if destination.id in {f.id for f in subtree}:
                raise ConflictError("Cannot move a folder into its own subfolder")

        await self.ensure_no_sibling_conflict(
            session, owner_id, parent_id, folder.name, exclude_id=folder.id
        )
        folder.parent_id = parent_id
        await self.recompute_paths(session, folder)
        return folder

    # ------------------------------------------------------------------
    # Tree traversal
    # ------------------------------------------------------------------

    async def collect_subtree(
        self,
        session: AsyncSession,
        root: FolderBase,
        *,
        descend: Callable[[FolderBase], bool] | None = None,
        include_files: bool = True,
    ) -> tuple[list[FolderBase], list[FileBase]]:
        """Breadth-first walk of *root* and its descendants.

        Returns ``(folders, files)`` with *root* first and every folder
        listed before its children.  Subfolders for which *descend* returns
        False are neither returned nor entered.  ``files`` holds every file
        directly inside a returned folder; callers filter by state.
        """
        folder_model = self._folder_model
        file_model = self._file_model
        folders: list[FolderBase] = [root]
        files: list[FileBase] = []
        seen = {root.id}
        frontier = [root.id]

        while frontier:
            if include_files:
                result = await session.execute(
                    select(file_model).where(file_model.folder_id.in_(frontier))  # type: ignore[union-attr]
                )
                files.extend(result.scalars().all())

            result = await session.execute(
                select(folder_model).where(folder_model.parent_id.in_(frontier))  # type: ignore[union-attr]
            )
            next_frontier: list[str] = []
            for child in result.scalars().all():
                if child.id in seen:
                    raise InconsistentStateError(
                        f"Folder cycle detected: {child.id} reached twice under {root.id}"
                    )
                seen.add(child.id)
                if descend is not None and not descend(child):
                    continue
                folders.append(child)
                next_frontier.append(child.id)
            frontier = next_frontier

        return folders, files

    async def recompute_paths(self, session: AsyncSession, folder: FolderBase) -> None:
        """Rewrite *folder*'s path from its parent, then every descendant's."""
        parent_path: str | None = None
        if folder.parent_id is not None:
            parent = await session.get(self._folder_model, folder.parent_id)
            if parent is None:
                raise InconsistentStateError(
                    f"Folder {folder.id} references missing parent {folder.parent_id}"
                )
            parent_path = parent.path

        now = utc_now()
        folder.path = join_folder_path(parent_path, folder.name)
        folder.updated_at = now

        subtree, _ = await self.collect_subtree(session, folder, include_files=False)
        paths = {folder.id: folder.path}
        for child in subtree[1:]:
            child.path = join_folder_path(paths[child.parent_id], child.name)  # type: ignore[index]
            child.updated_at = now
            paths[child.id] = child.path
        await session.flush()
        logger.debug("Recomputed %d folder paths under %s", len(subtree), folder.path)

    async def breadcrumbs(self, session: AsyncSession, folder: FolderBase) -> list[Breadcrumb]:
        """Ancestors of *folder* from the root down, *folder* included."""
        crumbs: list[Breadcrumb] = []
        seen: set[str] = set()
        current: FolderBase | None = folder
        while current is not None:
            if current.id in seen:
                raise InconsistentStateError(f"Folder cycle detected at {current.id}")
            seen.add(current.id)
            crumbs.append(Breadcrumb(id=current.id, name=current.name, path=current.path))
            if current.parent_id is None:
                break
            current = await session.get(self._folder_model, current.parent_id)
        crumbs.reverse()
        return crumbs

    async def list_children(
        self, session: AsyncSession, owner_id: str, folder_id: str | None
    ) -> tuple[list[FolderBase], list[FileBase]]:
        """Direct non-trashed subfolders and files of a folder (or the root)."""
        folder_model = self._folder_model
        file_model = self._file_model

        folder_stmt = select(folder_model).where(
            folder_model.owner_id == owner_id,
            folder_model.is_trashed == False,  # noqa: E712
        )
        file_stmt = select(file_model).where(
            file_model.owner_id == owner_id,
            file_model.is_trashed == False,  # noqa: E712
        )
        if folder_id is None:
            folder_stmt = folder_stmt.where(folder_model.parent_id.is_(None))  # type: ignore[union-attr]
            file_stmt = file_stmt.where(file_model.folder_id.is_(None))  # type: ignore[union-attr]
        else:
            folder_stmt = folder_stmt.where(folder_model.parent_id == folder_id)
            file_stmt = file_stmt.where(file_model.folder_id == folder_id)

        folders = await session.execute(folder_stmt.order_by(folder_model.name))
        files = await session.execute(file_stmt.order_by(file_model.original_name))
        return list(folders.scalars().all()), list(files.scalars().all())
