"""Sharebox — async facade wiring storage, services, and the event bus."""

from __future__ import annotations

import asyncio
import logging
import posixpath
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sharebox.collaborators import CollaboratorService
from sharebox.config import ShareboxSettings, get_settings
from sharebox.events import AuditAction, AuditEvent, AuditOutcome, EventBus, log_audit_event
from sharebox.exceptions import ForbiddenError, NotFoundError, StorageError
from sharebox.files import FileService
from sharebox.folders import FolderService
from sharebox.models.collaborators import Collaborator
from sharebox.models.files import File
from sharebox.models.folders import Folder
from sharebox.models.shares import ShareLink
from sharebox.permissions import PermissionService, ResourceKind, Role, can_access
from sharebox.sharing import ShareLinkService, evaluate_link
from sharebox.storage import create_object_store
from sharebox.trash import TrashService
from sharebox.types import (
    AccessDecision,
    BatchUploadResult,
    Breadcrumb,
    CollaboratorInfo,
    DenialReason,
    DownloadGrant,
    DownloadMode,
    FileInfo,
    FolderInfo,
    FolderListing,
    PurgeResult,
    ShareDownloadResult,
    ShareLinkInfo,
    ShareViewResult,
    TrashListing,
    TrashResult,
    UploadError,
    UploadItem,
)
from sharebox.utils import guess_mime_type, make_storage_key, utc_now, validate_name

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from sharebox.models.collaborators import CollaboratorBase
    from sharebox.models.files import FileBase
    from sharebox.permissions import Principal, SharePermission
    from sharebox.storage import ObjectStore

logger = logging.getLogger(__name__)

# One retry covers a lost insert race; the second pass sees the winner.
_GRANT_INSERT_ATTEMPTS = 2


class Sharebox:
    """Async facade over the file-sharing core.

    Every public operation runs in exactly one database transaction:
    committed on success, rolled back on any exception.  Object store
    deletes that must not block metadata (purge cleanup) run after commit.

    Usage::

        engine = create_async_engine("sqlite+aiosqlite:///sharebox.db")
        box = Sharebox(engine=engine, store=LocalObjectStore("./uploads"))
        await box.open()
        info = await box.upload_file(Principal("u1"), "a.pdf", data)
    """

    def __init__(
        self,
        *,
        store: ObjectStore,
        engine: AsyncEngine | None = None,
        session_factory: Callable[..., AsyncSession] | None = None,
        settings: ShareboxSettings | None = None,
        event_bus: EventBus | None = None,
        profile_lookup: Callable[[str], Awaitable[str | None]] | None = None,
    ) -> None:
        if engine is not None and session_factory is not None:
            raise ValueError("Provide engine or session_factory, not both")
        if engine is None and session_factory is None:
            raise ValueError("Provide engine or session_factory")
        if session_factory is None:
            session_factory = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )

        self._engine = engine
        self._owns_engine = False
        self._session_factory = session_factory
        self.settings = settings or get_settings()
        self.store = store
        self._profile_lookup = profile_lookup
        if event_bus is None:
            event_bus = EventBus()
            event_bus.register(log_audit_event)
        self.event_bus = event_bus

        self._permissions = PermissionService(File, Folder, Collaborator)
        self._files = FileService(File, Folder)
        self._folders = FolderService(Folder, File)
        self._collaborators = CollaboratorService(Collaborator)
        self._links = ShareLinkService(ShareLink, File, Folder)
        self._trash = TrashService(File, Folder, self._folders, self._links, self._collaborators)

    @classmethod
    def from_settings(cls, settings: ShareboxSettings | None = None) -> Sharebox:
        """Build engine and object store from configuration."""
        settings = settings or get_settings()
        box = cls(
            engine=create_async_engine(settings.database_url),
            store=create_object_store(settings),
            settings=settings,
        )
        box._owns_engine = True
        return box

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_tables(self) -> None:
        """Create the Sharebox tables if they do not exist."""
        if self._engine is None:
            raise ValueError("create_tables() requires an engine")
        async with self._engine.begin() as conn:
            for model in (Folder, File, ShareLink, Collaborator):
                await conn.run_sync(
                    lambda c, m=model: m.__table__.create(c, checkfirst=True)  # type: ignore[attr-defined]
                )

    async def open(self) -> None:
        if self._engine is not None:
            await self.create_tables()
        await self.store.open()

    async def close(self) -> None:
        try:
            await self.store.close()
        except Exception:
            logger.warning("Object store close failed for %s", self.store.name, exc_info=True)
        if self._owns_engine and self._engine is not None:
            await self._engine.dispose()

    async def __aenter__(self) -> Sharebox:
        await self.open()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    @property
    def _timeout(self) -> float | None:
        return self.settings.storage_timeout_seconds

    async def _emit(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: str | None = None,
        *,
        principal: Principal | None = None,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        detail: str = "",
    ) -> None:
        await self.event_bus.emit(
            AuditEvent(
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                outcome=outcome,
                user_id=principal.user_id if principal is not None else None,
                detail=detail,
            )
        )

    @staticmethod
    def _require_user(principal: Principal) -> str:
        if principal.user_id is None:
            raise ForbiddenError("Authentication required")
        return principal.user_id

    async def _discard_object(self, key: str) -> bool:
        """Best-effort object delete. Returns False (and logs) on failure."""
        try:
            await self.store.delete(key, timeout=self._timeout)
        except StorageError:
            logger.warning("Failed to delete stored object %s", key, exc_info=True)
            return False
        return True

    async def _download_grant(self, file: FileBase) -> DownloadGrant:
        ttl = timedelta(seconds=self.settings.presign_ttl_seconds)
        locator = await self.store.presign(file.storage_key, ttl, timeout=self._timeout)
        grant = DownloadGrant(
            mode=DownloadMode.STREAM,
            filename=file.original_name,
            content_type=file.content_type,
            size_bytes=file.size_bytes,
        )
        if self.store.supports_presigned_urls:
            grant.mode = DownloadMode.REDIRECT
            grant.url = locator
        else:
            grant.path = locator
        return grant

    async def _display_name(self, user_id: str) -> str | None:
        if self._profile_lookup is None:
            return None
        try:
            return await self._profile_lookup(user_id)
        except Exception:
            logger.warning("Profile lookup failed for %s", user_id, exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def upload_file(
        self,
        principal: Principal,
        filename: str,
        data: bytes,
        *,
        content_type: str | None = None,
        folder_id: str | None = None,
        is_public: bool = False,
        description: str = "",
        tags: str = "",
    ) -> FileInfo:
        """Store *data* and record its metadata.

        If anything fails once the object write has been attempted, the
        object is deleted again before the error propagates.
        """
        owner_id = self._require_user(principal)
        name = posixpath.basename(filename.replace("\\", "/")).strip()
        ok, err = validate_name(name)
        if not ok:
            raise ValueError(err)
        if len(data) > self.settings.max_upload_size:
            raise ValueError(
                f"File too large: {len(data)} bytes (max {self.settings.max_upload_size})"
            )
        content_type = content_type or guess_mime_type(name)
        key = make_storage_key(owner_id, name)

        write_attempted = False
        try:
            async with self._session() as session:
                await self._files.require_folder(session, owner_id, folder_id)
                write_attempted = True
                locator = await self.store.put(key, data, content_type, timeout=self._timeout)
                file = await self._files.create_record(
                    session,
                    owner_id=owner_id,
                    folder_id=folder_id,
                    original_name=name,
                    storage_key=key,
                    locator=locator,
                    size_bytes=len(data),
                    content_type=content_type,
                    is_public=is_public,
                    description=description,
                    tags=tags,
                )
                info = FileInfo.from_model(file)
        except Exception as e:
            if write_attempted:
                await self._discard_object(key)
            await self._emit(
                AuditAction.FILE_UPLOAD,
                "file",
                principal=principal,
                outcome=AuditOutcome.FAILURE,
                detail=f"{name}: {e}",
            )
            raise

        if is_public:
            await self.store.set_visibility(key, True, timeout=self._timeout)
        await self._emit(AuditAction.FILE_UPLOAD, "file", info.id, principal=principal, detail=name)
        return info

    async def upload_files(
        self,
        principal: Principal,
        uploads: list[UploadItem],
        *,
        folder_id: str | None = None,
        is_public: bool = False,
    ) -> BatchUploadResult:
        """Upload several files concurrently; failures are reported per file."""
        self._require_user(principal)
        semaphore = asyncio.Semaphore(self.settings.upload_concurrency)

        async def _upload(item: UploadItem) -> FileInfo:
            async with semaphore:
                return await self.upload_file(
                    principal,
                    item.filename,
                    item.data,
                    content_type=item.content_type,
                    folder_id=folder_id,
                    is_public=is_public,
                )

        outcomes = await asyncio.gather(*(_upload(item) for item in uploads), return_exceptions=True)

        result = BatchUploadResult(total=len(uploads))
        for item, outcome in zip(uploads, outcomes, strict=True):
            if isinstance(outcome, FileInfo):
                result.uploaded.append(outcome)
            elif isinstance(outcome, Exception):
                logger.warning("Upload of %s failed: %s", item.filename, outcome)
                result.errors.append(UploadError(filename=item.filename, message=str(outcome)))
            else:
                raise outcome
        return result

    async def get_file(self, principal: Principal, file_id: str) -> FileInfo:
        async with self._session() as session:
            await self._permissions.require(session, principal, ResourceKind.FILE, file_id)
            file = await self._files.get(session, file_id)
            if file is None:
                raise NotFoundError(f"File not found: {file_id}")
            return FileInfo.from_model(file)

    async def list_files(
        self, principal: Principal, folder_id: str | None = None
    ) -> list[FileInfo]:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            files = await self._files.list_files(session, owner_id, folder_id)
            return [FileInfo.from_model(f) for f in files]

    async def update_file(
        self,
        principal: Principal,
        file_id: str,
        *,
        original_name: str | None = None,
        description: str | None = None,
        tags: str | None = None,
        is_starred: bool | None = None,
    ) -> FileInfo:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            file = await self._files.update(
                session,
                owner_id,
                file_id,
                original_name=original_name,
                description=description,
                tags=tags,
                is_starred=is_starred,
            )
            info = FileInfo.from_model(file)
        await self._emit(AuditAction.FILE_UPDATE, "file", file_id, principal=principal)
        return info

    async def move_file(
        self, principal: Principal, file_id: str, folder_id: str | None
    ) -> FileInfo:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            file = await self._files.move(session, owner_id, file_id, folder_id)
            info = FileInfo.from_model(file)
        await self._emit(
            AuditAction.FILE_MOVE, "file", file_id, principal=principal,
            detail=f"to {folder_id or 'root'}",
        )
        return info

    async def set_file_public(self, principal: Principal, file_id: str, public: bool) -> FileInfo:
        """Flip the public flag; the storage ACL follows best-effort."""
        owner_id = self._require_user(principal)
        async with self._session() as session:
            file = await self._files.set_public(session, owner_id, file_id, public)
            info = FileInfo.from_model(file)
        await self.store.set_visibility(info.storage_key, public, timeout=self._timeout)
        await self._emit(
            AuditAction.FILE_UPDATE, "file", file_id, principal=principal,
            detail=f"public={public}",
        )
        return info

    async def get_file_download(self, principal: Principal, file_id: str) -> DownloadGrant:
        """Authorize a direct download and count it."""
        async with self._session() as session:
            await self._permissions.require(session, principal, ResourceKind.FILE, file_id)
            file = await self._files.get(session, file_id)
            if file is None or file.is_trashed:
                raise NotFoundError(f"File not found: {file_id}")
            await self._files.increment_download(session, file.id)
            grant = await self._download_grant(file)
        await self._emit(AuditAction.FILE_DOWNLOAD, "file", file_id, principal=principal)
        return grant

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(
        self,
        principal: Principal,
        name: str,
        *,
        parent_id: str | None = None,
        color: str = "",
    ) -> FolderInfo:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            folder = await self._folders.create(
                session, owner_id, name, parent_id=parent_id, color=color
            )
            info = FolderInfo.from_model(folder)
        await self._emit(
            AuditAction.FOLDER_CREATE, "folder", info.id, principal=principal, detail=info.path
        )
        return info

    async def rename_folder(self, principal: Principal, folder_id: str, name: str) -> FolderInfo:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            folder = await self._folders.rename(session, owner_id, folder_id, name)
            info = FolderInfo.from_model(folder)
        await self._emit(
            AuditAction.FOLDER_UPDATE, "folder", folder_id, principal=principal, detail=info.path
        )
        return info

    async def set_folder_color(
        self, principal: Principal, folder_id: str, color: str
    ) -> FolderInfo:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            folder = await self._folders.set_color(session, owner_id, folder_id, color)
            info = FolderInfo.from_model(folder)
        await self._emit(AuditAction.FOLDER_UPDATE, "folder", folder_id, principal=principal)
        return info

    async def move_folder(
        self, principal: Principal, folder_id: str, parent_id: str | None
    ) -> FolderInfo:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            folder = await self._folders.move(session, owner_id, folder_id, parent_id)
            info = FolderInfo.from_model(folder)
        await self._emit(
            AuditAction.FOLDER_MOVE, "folder", folder_id, principal=principal, detail=info.path
        )
        return info

    async def get_folder(self, principal: Principal, folder_id: str) -> FolderInfo:
        async with self._session() as session:
            await self._permissions.require(session, principal, ResourceKind.FOLDER, folder_id)
            folder = await session.get(Folder, folder_id)
            if folder is None:
                raise NotFoundError(f"Folder not found: {folder_id}")
            return FolderInfo.from_model(folder)

    async def list_folder(
        self, principal: Principal, folder_id: str | None = None
    ) -> FolderListing:
        """Direct live children of a folder, or of the caller's root."""
        async with self._session() as session:
            if folder_id is None:
                owner_id = self._require_user(principal)
                folder_info = None
            else:
                target = await self._permissions.require(
                    session, principal, ResourceKind.FOLDER, folder_id
                )
                if target.is_trashed:
                    raise NotFoundError(f"Folder not found: {folder_id}")
                owner_id = target.owner_id
                folder = await session.get(Folder, folder_id)
                if folder is None:
                    raise NotFoundError(f"Folder not found: {folder_id}")
                folder_info = FolderInfo.from_model(folder)
            folders, files = await self._folders.list_children(session, owner_id, folder_id)
            return FolderListing(
                folder=folder_info,
                folders=[FolderInfo.from_model(f) for f in folders],
                files=[FileInfo.from_model(f) for f in files],
            )

    async def folder_breadcrumbs(self, principal: Principal, folder_id: str) -> list[Breadcrumb]:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            folder = await self._folders.get_owned(session, owner_id, folder_id)
            return await self._folders.breadcrumbs(session, folder)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def _require_owner(
        self,
        session: AsyncSession,
        principal: Principal,
        kind: ResourceKind,
        resource_id: str,
    ) -> None:
        target = await self._permissions.load_target(session, kind, resource_id)
        if target is None or target.owner_id != principal.user_id or target.is_trashed:
            raise NotFoundError(f"{kind.value.capitalize()} not found: {resource_id}")

    async def _owned_grant(
        self, session: AsyncSession, principal: Principal, grant_id: str
    ) -> CollaboratorBase:
        grant = await self._collaborators.get(session, grant_id)
        if grant is None:
            raise NotFoundError(f"Collaborator not found: {grant_id}")
        if grant.file_id is not None:
            await self._require_owner(session, principal, ResourceKind.FILE, grant.file_id)
        else:
            await self._require_owner(session, principal, ResourceKind.FOLDER, grant.folder_id)  # type: ignore[arg-type]
        return grant

    async def add_collaborator(
        self,
        principal: Principal,
        kind: ResourceKind,
        resource_id: str,
        user_id: str,
        role: str | Role,
        *,
        expires_at: datetime | None = None,
    ) -> CollaboratorInfo:
        """Grant *role* on a resource to *user_id* (owner only, upserts).

        A concurrent add that wins the insert race turns this call into
        an update of the grant it created.
        """
        owner_id = self._require_user(principal)
        kind = ResourceKind(kind)
        for attempt in range(1, _GRANT_INSERT_ATTEMPTS + 1):
            try:
                async with self._session() as session:
                    await self._require_owner(session, principal, kind, resource_id)
                    grant, created = await self._collaborators.add(
                        session,
                        kind=kind,
                        resource_id=resource_id,
                        user_id=user_id,
                        role=role,
                        granted_by=owner_id,
                        expires_at=expires_at,
                    )
                    info = CollaboratorInfo.from_model(grant)
            except IntegrityError:
                if attempt == _GRANT_INSERT_ATTEMPTS:
                    raise
                logger.warning(
                    "Grant insert for %s on %s %s raced another add, retrying",
                    user_id,
                    kind.value,
                    resource_id,
                )
                continue
            break

        await self._emit(
            AuditAction.COLLABORATOR_ADD if created else AuditAction.COLLABORATOR_UPDATE,
            "collaborator",
            info.id,
            principal=principal,
            detail=f"{user_id} as {info.role} on {kind.value} {resource_id}",
        )
        return info

    async def update_collaborator(
        self,
        principal: Principal,
        grant_id: str,
        *,
        role: str | Role | None = None,
        expires_at: datetime | None = None,
        clear_expiry: bool = False,
    ) -> CollaboratorInfo:
        self._require_user(principal)
        async with self._session() as session:
            grant = await self._owned_grant(session, principal, grant_id)
            grant = await self._collaborators.update(
                session, grant, role=role, expires_at=expires_at, clear_expiry=clear_expiry
            )
            info = CollaboratorInfo.from_model(grant)
        await self._emit(
            AuditAction.COLLABORATOR_UPDATE, "collaborator", grant_id, principal=principal
        )
        return info

    async def remove_collaborator(self, principal: Principal, grant_id: str) -> None:
        self._require_user(principal)
        async with self._session() as session:
            grant = await self._owned_grant(session, principal, grant_id)
            await self._collaborators.remove(session, grant)
        await self._emit(
            AuditAction.COLLABORATOR_REMOVE, "collaborator", grant_id, principal=principal
        )

    async def list_collaborators(
        self, principal: Principal, kind: ResourceKind, resource_id: str
    ) -> list[CollaboratorInfo]:
        self._require_user(principal)
        kind = ResourceKind(kind)
        async with self._session() as session:
            await self._require_owner(session, principal, kind, resource_id)
            grants = await self._collaborators.list_for(session, kind, resource_id)
            return [CollaboratorInfo.from_model(g) for g in grants]

    async def shared_with_me(
        self, principal: Principal, kind: ResourceKind | None = None
    ) -> list[CollaboratorInfo]:
        """Live, non-expired grants held by the caller."""
        user_id = self._require_user(principal)
        async with self._session() as session:
            grants = await self._collaborators.shared_with(session, user_id, kind)
            visible: list[CollaboratorInfo] = []
            for grant in grants:
                if grant.file_id is not None:
                    resource = await self._files.get(session, grant.file_id)
                else:
                    resource = await session.get(Folder, grant.folder_id)
                if resource is None or resource.is_trashed:
                    continue
                visible.append(CollaboratorInfo.from_model(grant))
            return visible

    async def can_access(
        self,
        principal: Principal,
        kind: ResourceKind,
        resource_id: str,
        required_role: str | Role = Role.VIEWER,
    ) -> bool:
        async with self._session() as session:
            return await self._permissions.can_access(
                session, principal, ResourceKind(kind), resource_id, Role.parse(required_role)
            )

    async def sweep_expired_collaborators(self) -> int:
        async with self._session() as session:
            return await self._collaborators.sweep_expired(session)

    # ------------------------------------------------------------------
    # Share links
    # ------------------------------------------------------------------

    async def _authorize_link_creation(
        self,
        session: AsyncSession,
        principal: Principal,
        file_id: str | None,
        folder_id: str | None,
    ) -> None:
        if file_id is not None and folder_id is None:
            kind, resource_id = ResourceKind.FILE, file_id
        elif folder_id is not None and file_id is None:
            kind, resource_id = ResourceKind.FOLDER, folder_id
        else:
            raise ValueError("A share link targets exactly one of file_id or folder_id")
        target = await self._permissions.require(session, principal, kind, resource_id)
        if target.is_trashed:
            raise NotFoundError(f"{kind.value.capitalize()} not found: {resource_id}")
        if target.owner_id == principal.user_id:
            return
        if self.settings.allow_editor_share_links and can_access(principal, target, Role.EDITOR):
            return
        raise ForbiddenError(f"Only the owner can share this {kind.value}")

    async def create_share_link(
        self,
        principal: Principal,
        *,
        file_id: str | None = None,
        folder_id: str | None = None,
        password: str | None = None,
        expires_at: datetime | None = None,
        max_downloads: int = 0,
        permission: str | SharePermission = "view",
        allow_download: bool = True,
        description: str = "",
    ) -> ShareLinkInfo:
        """Create a share link, retrying the transaction on a token collision."""
        user_id = self._require_user(principal)
        attempts = self.settings.token_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                async with self._session() as session:
                    await self._authorize_link_creation(session, principal, file_id, folder_id)
                    link = await self._links.create(
                        session,
                        owner_id=user_id,
                        file_id=file_id,
                        folder_id=folder_id,
                        password=password,
                        expires_at=expires_at,
                        max_downloads=max_downloads,
                        permission=permission,
                        allow_download=allow_download,
                        description=description,
                        token_bytes=self.settings.share_token_bytes,
                        token_attempts=attempts,
                    )
                    info = ShareLinkInfo.from_model(link)
            except IntegrityError:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Share link insert hit a constraint, retrying (attempt %d/%d)",
                    attempt,
                    attempts,
                )
                continue
            break

        await self._emit(
            AuditAction.SHARE_CREATE,
            "share_link",
            info.id,
            principal=principal,
            detail=f"file={file_id} folder={folder_id}",
        )
        return info

    async def update_share_link(
        self,
        principal: Principal,
        link_id: str,
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
    ) -> ShareLinkInfo:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            link = await self._links.get_owned(session, owner_id, link_id)
            link = await self._links.update(
                session,
                link,
                password=password,
                clear_password=clear_password,
                expires_at=expires_at,
                clear_expiry=clear_expiry,
                max_downloads=max_downloads,
                permission=permission,
                allow_download=allow_download,
                is_active=is_active,
                description=description,
            )
            info = ShareLinkInfo.from_model(link)
        await self._emit(AuditAction.SHARE_UPDATE, "share_link", link_id, principal=principal)
        return info

    async def revoke_share_link(self, principal: Principal, link_id: str) -> ShareLinkInfo:
        """Deactivate a link without deleting it."""
        owner_id = self._require_user(principal)
        async with self._session() as session:
            link = await self._links.get_owned(session, owner_id, link_id)
            link = await self._links.update(session, link, is_active=False)
            info = ShareLinkInfo.from_model(link)
        await self._emit(
            AuditAction.SHARE_UPDATE, "share_link", link_id, principal=principal, detail="revoked"
        )
        return info

    async def delete_share_link(self, principal: Principal, link_id: str) -> None:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            link = await self._links.get_owned(session, owner_id, link_id)
            await self._links.delete(session, link)
        await self._emit(AuditAction.SHARE_DELETE, "share_link", link_id, principal=principal)

    async def get_share_link(self, principal: Principal, link_id: str) -> ShareLinkInfo:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            link = await self._links.get_owned(session, owner_id, link_id)
            return ShareLinkInfo.from_model(link)

    async def list_share_links(
        self,
        principal: Principal,
        *,
        file_id: str | None = None,
        folder_id: str | None = None,
    ) -> list[ShareLinkInfo]:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            links = await self._links.list_links(
                session, owner_id, file_id=file_id, folder_id=folder_id
            )
            return [ShareLinkInfo.from_model(link) for link in links]

    async def authorize_share(self, token: str, password: str | None = None) -> AccessDecision:
        """Evaluate a token without consuming anything."""
        async with self._session() as session:
            return await self._links.authorize(session, token, password)

    async def view_share(self, token: str, password: str | None = None) -> ShareViewResult:
        """Public metadata for a share link; counts one view when granted."""
        async with self._session() as session:
            decision = await self._links.authorize(session, token, password)
            link = decision.link
            link_id = link.id if link is not None else None
            if decision.granted and link is not None:
                await self._links.record_view(session, link)
                shared_by = await self._display_name(link.owner_id)
                asset = await self._links.build_asset(session, link, shared_by)
                result = ShareViewResult(success=True, message="Access granted", asset=asset)
            else:
                reason = decision.reason or DenialReason.NOT_FOUND
                result = ShareViewResult(success=False, message=reason.message, reason=reason)

        await self._emit(
            AuditAction.SHARE_VIEW,
            "share_link",
            link_id,
            outcome=AuditOutcome.SUCCESS if result.success else AuditOutcome.DENIED,
            detail=result.reason.value if result.reason is not None else "",
        )
        return result

    async def download_share(
        self,
        token: str,
        password: str | None = None,
        file_id: str | None = None,
    ) -> ShareDownloadResult:
        """Authorize a download through a share link and count it.

        Folder links need *file_id* of a live file inside the shared folder.
        """
        link_id: str | None = None
        async with self._session() as session:
            decision = await self._links.authorize(session, token, password)
            reason = decision.reason or DenialReason.NOT_FOUND
            grant: DownloadGrant | None = None
            link = decision.link
            if decision.granted and link is not None:
                link_id = link.id
                if not link.allow_download:
                    reason = DenialReason.DOWNLOAD_DISABLED
                else:
                    file = await self._links.resolve_download_file(session, link, file_id)
                    if file is None:
                        reason = DenialReason.NOT_FOUND
                    elif not await self._links.consume_download(session, link, file.id):
                        retry = evaluate_link(link, password)
                        reason = retry.reason or DenialReason.QUOTA_EXHAUSTED
                    else:
                        grant = await self._download_grant(file)
            elif link is not None:
                link_id = link.id

        if grant is not None:
            result = ShareDownloadResult(success=True, message="Download authorized", grant=grant)
        else:
            result = ShareDownloadResult(success=False, message=reason.message, reason=reason)
        await self._emit(
            AuditAction.SHARE_DOWNLOAD,
            "share_link",
            link_id,
            outcome=AuditOutcome.SUCCESS if result.success else AuditOutcome.DENIED,
            detail=result.reason.value if result.reason is not None else "",
        )
        return result

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    async def _delete_purged_objects(self, result: PurgeResult) -> PurgeResult:
        for key in result.storage_keys:
            if not await self._discard_object(key):
                result.storage_failures.append(key)
        return result

    async def trash_file(self, principal: Principal, file_id: str) -> TrashResult:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            result = await self._trash.trash_file(session, owner_id, file_id)
        await self._emit(AuditAction.TRASH, "file", file_id, principal=principal)
        return result

    async def trash_folder(self, principal: Principal, folder_id: str) -> TrashResult:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            result = await self._trash.trash_folder(session, owner_id, folder_id)
        await self._emit(
            AuditAction.TRASH, "folder", folder_id, principal=principal,
            detail=f"{result.folders_affected} folders, {result.files_affected} files",
        )
        return result

    async def restore_file(self, principal: Principal, file_id: str) -> TrashResult:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            result = await self._trash.restore_file(session, owner_id, file_id)
        await self._emit(AuditAction.RESTORE, "file", file_id, principal=principal)
        return result

    async def restore_folder(self, principal: Principal, folder_id: str) -> TrashResult:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            result = await self._trash.restore_folder(session, owner_id, folder_id)
        await self._emit(
            AuditAction.RESTORE, "folder", folder_id, principal=principal,
            detail=f"{result.folders_affected} folders, {result.files_affected} files",
        )
        return result

    async def purge_file(self, principal: Principal, file_id: str) -> PurgeResult:
        """Permanently delete a trashed file; its object is removed after commit."""
        owner_id = self._require_user(principal)
        async with self._session() as session:
            result = await self._trash.purge_file(session, owner_id, file_id)
        await self._delete_purged_objects(result)
        await self._emit(AuditAction.PURGE, "file", file_id, principal=principal)
        return result

    async def purge_folder(self, principal: Principal, folder_id: str) -> PurgeResult:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            result = await self._trash.purge_folder(session, owner_id, folder_id)
        await self._delete_purged_objects(result)
        await self._emit(
            AuditAction.PURGE, "folder", folder_id, principal=principal,
            detail=f"{result.folders_deleted} folders, {result.files_deleted} files",
        )
        return result

    async def list_trash(
        self, principal: Principal, *, page: int = 1, limit: int = 50
    ) -> TrashListing:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            return await self._trash.list_trash(session, owner_id, page=page, limit=limit)

    async def empty_trash(self, principal: Principal) -> PurgeResult:
        owner_id = self._require_user(principal)
        async with self._session() as session:
            result = await self._trash.empty_trash(session, owner_id)
        await self._delete_purged_objects(result)
        await self._emit(
            AuditAction.EMPTY_TRASH, "trash", principal=principal,
            detail=f"{result.total_deleted} items",
        )
        return result

    async def sweep_expired_trash(self, retention_days: int | None = None) -> PurgeResult:
        """Purge items trashed longer than the retention window, for all owners."""
        if retention_days is None:
            retention_days = self.settings.trash_retention_days
        if retention_days < 0:
            raise ValueError("retention_days must be >= 0")
        cutoff = utc_now() - timedelta(days=retention_days)
        async with self._session() as session:
            result = await self._trash.sweep_expired(session, cutoff)
        await self._delete_purged_objects(result)
        await self._emit(
            AuditAction.TRASH_SWEEP, "trash", detail=f"{result.total_deleted} items"
        )
        return result
