"""Result types: FileInfo, FolderInfo, AccessDecision, DownloadGrant, etc."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import (
    ForbiddenError,
    InvalidCredentialError,
    NotFoundError,
    QuotaExhaustedError,
    ShareLinkExpiredError,
    ShareLinkInactiveError,
)

if TYPE_CHECKING:
    from datetime import datetime

    from sharebox.models.collaborators import CollaboratorBase
    from sharebox.models.files import FileBase
    from sharebox.models.folders import FolderBase
    from sharebox.models.shares import ShareLinkBase


# =============================================================================
# Files and Folders
# =============================================================================


@dataclass
class FileInfo:
    """File metadata as returned to the owner."""

    id: str
    name: str
    owner_id: str
    folder_id: str | None
    storage_key: str
    size_bytes: int
    content_type: str
    extension: str = ""
    description: str = ""
    tags: str = ""
    is_public: bool = False
    is_starred: bool = False
    is_trashed: bool = False
    trashed_at: datetime | None = None
    download_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, file: FileBase) -> FileInfo:
        return cls(
            id=file.id,
            name=file.original_name,
            owner_id=file.owner_id,
            folder_id=file.folder_id,
            storage_key=file.storage_key,
            size_bytes=file.size_bytes,
            content_type=file.content_type,
            extension=file.extension,
            description=file.description,
            tags=file.tags,
            is_public=file.is_public,
            is_starred=file.is_starred,
            is_trashed=file.is_trashed,
            trashed_at=file.trashed_at,
            download_count=file.download_count,
            created_at=file.created_at,
            updated_at=file.updated_at,
        )


@dataclass
class FolderInfo:
    """Folder metadata."""

    id: str
    name: str
    path: str
    owner_id: str
    parent_id: str | None
    color: str = ""
    is_trashed: bool = False
    trashed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, folder: FolderBase) -> FolderInfo:
        return cls(
            id=folder.id,
            name=folder.name,
            path=folder.path,
            owner_id=folder.owner_id,
            parent_id=folder.parent_id,
            color=folder.color,
            is_trashed=folder.is_trashed,
            trashed_at=folder.trashed_at,
            created_at=folder.created_at,
            updated_at=folder.updated_at,
        )


@dataclass
class Breadcrumb:
    id: str
    name: str
    path: str


@dataclass
class FolderListing:
    """Direct, non-trashed children of a folder (or of the root)."""

    folder: FolderInfo | None
    folders: list[FolderInfo] = field(default_factory=list)
    files: list[FileInfo] = field(default_factory=list)


# =============================================================================
# Uploads
# =============================================================================


@dataclass
class UploadItem:
    """One file in a batch upload."""

    filename: str
    data: bytes
    content_type: str | None = None


@dataclass
class UploadError:
    filename: str
    message: str


@dataclass
class BatchUploadResult:
    """Aggregate result of a multi-file upload. Partial success is normal."""

    uploaded: list[FileInfo] = field(default_factory=list)
    errors: list[UploadError] = field(default_factory=list)
    total: int = 0

    @property
    def success_count(self) -> int:
        return len(self.uploaded)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def partial(self) -> bool:
        return bool(self.uploaded) and bool(self.errors)


# =============================================================================
# Downloads
# =============================================================================


class DownloadMode(str, Enum):
    REDIRECT = "redirect"
    """``url`` is a presigned URL the caller should redirect to."""
    STREAM = "stream"
    """``path`` is a local file the caller should stream."""


@dataclass
class DownloadGrant:
    """How the caller should deliver bytes for an authorized download."""

    mode: DownloadMode
    filename: str
    content_type: str
    size_bytes: int
    url: str | None = None
    path: str | None = None


# =============================================================================
# Share Links
# =============================================================================


class DenialReason(str, Enum):
    """Why a share link access attempt was refused."""

    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    QUOTA_EXHAUSTED = "quota_exhausted"
    PASSWORD_REQUIRED = "password_required"
    PASSWORD_INVALID = "password_invalid"
    DOWNLOAD_DISABLED = "download_disabled"

    @property
    def http_status(self) -> int:
        return _DENIAL_STATUS[self]

    @property
    def message(self) -> str:
        return _DENIAL_MESSAGES[self]


_DENIAL_STATUS = {
    DenialReason.NOT_FOUND: 404,
    DenialReason.INACTIVE: 403,
    DenialReason.EXPIRED: 410,
    DenialReason.QUOTA_EXHAUSTED: 403,
    DenialReason.PASSWORD_REQUIRED: 401,
    DenialReason.PASSWORD_INVALID: 401,
    DenialReason.DOWNLOAD_DISABLED: 403,
}

_DENIAL_MESSAGES = {
    DenialReason.NOT_FOUND: "Share link not found",
    DenialReason.INACTIVE: "Share link is not accessible",
    DenialReason.EXPIRED: "Share link has expired",
    DenialReason.QUOTA_EXHAUSTED: "Share link download limit reached",
    DenialReason.PASSWORD_REQUIRED: "Password required for this share link",
    DenialReason.PASSWORD_INVALID: "Invalid password",
    DenialReason.DOWNLOAD_DISABLED: "Downloads are disabled for this share link",
}

_DENIAL_ERRORS: dict[DenialReason, type[Exception]] = {
    DenialReason.NOT_FOUND: NotFoundError,
    DenialReason.INACTIVE: ShareLinkInactiveError,
    DenialReason.EXPIRED: ShareLinkExpiredError,
    DenialReason.QUOTA_EXHAUSTED: QuotaExhaustedError,
    DenialReason.PASSWORD_REQUIRED: InvalidCredentialError,
    DenialReason.PASSWORD_INVALID: InvalidCredentialError,
    DenialReason.DOWNLOAD_DISABLED: ForbiddenError,
}


@dataclass
class AccessDecision:
    """Outcome of evaluating a share link: granted, or denied with a reason."""

    granted: bool
    reason: DenialReason | None = None
    link: ShareLinkBase | None = None

    def __post_init__(self) -> None:
        if self.granted and self.link is None:
            raise ValueError("A granted decision needs the link it grants")
        if not self.granted and self.reason is None:
            raise ValueError("A denied decision needs a reason")

    @classmethod
    def grant(cls, link: ShareLinkBase) -> AccessDecision:
        return cls(granted=True, link=link)

    @classmethod
    def deny(cls, reason: DenialReason, link: ShareLinkBase | None = None) -> AccessDecision:
        return cls(granted=False, reason=reason, link=link)

    def raise_for_denial(self) -> None:
        """Raise the matching ``ShareboxError`` subclass if access was denied."""
        if self.granted:
            return
        reason = self.reason or DenialReason.NOT_FOUND
        raise _DENIAL_ERRORS[reason](reason.message)


@dataclass
class SharedEntry:
    """One child of a shared folder, as visible to a link holder."""

    id: str
    name: str
    is_folder: bool
    size_bytes: int | None = None
    content_type: str | None = None


@dataclass
class SharedAsset:
    """Public projection of a shared file or folder.

    Never carries the password hash, storage key, or owner id.
    """

    token: str
    kind: str
    name: str
    permission: str
    allow_download: bool
    has_password: bool
    view_count: int
    download_count: int
    max_downloads: int
    expires_at: datetime | None = None
    description: str = ""
    size_bytes: int | None = None
    content_type: str | None = None
    shared_by: str | None = None
    entries: list[SharedEntry] = field(default_factory=list)


@dataclass
class ShareViewResult:
    """Result of a view (metadata disclosure) attempt."""

    success: bool
    message: str
    reason: DenialReason | None = None
    asset: SharedAsset | None = None


@dataclass
class ShareDownloadResult:
    """Result of a download attempt through a share link."""

    success: bool
    message: str
    reason: DenialReason | None = None
    grant: DownloadGrant | None = None


@dataclass
class ShareLinkInfo:
    """Owner-facing share link metadata (no password hash)."""

    id: str
    token: str
    file_id: str | None
    folder_id: str | None
    permission: str
    allow_download: bool
    has_password: bool
    is_active: bool
    max_downloads: int
    download_count: int
    view_count: int
    description: str = ""
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, link: ShareLinkBase) -> ShareLinkInfo:
        return cls(
            id=link.id,
            token=link.token,
            file_id=link.file_id,
            folder_id=link.folder_id,
            permission=link.permission,
            allow_download=link.allow_download,
            has_password=link.has_password,
            is_active=link.is_active,
            max_downloads=link.max_downloads,
            download_count=link.download_count,
            view_count=link.view_count,
            description=link.description,
            expires_at=link.expires_at,
            created_at=link.created_at,
            updated_at=link.updated_at,
        )


# =============================================================================
# Collaborators
# =============================================================================


@dataclass
class CollaboratorInfo:
    id: str
    user_id: str
    role: str
    file_id: str | None = None
    folder_id: str | None = None
    granted_by: str = ""
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, grant: CollaboratorBase) -> CollaboratorInfo:
        return cls(
            id=grant.id,
            user_id=grant.user_id,
            role=grant.role,
            file_id=grant.file_id,
            folder_id=grant.folder_id,
            granted_by=grant.granted_by,
            expires_at=grant.expires_at,
            created_at=grant.created_at,
            updated_at=grant.updated_at,
        )


# =============================================================================
# Trash
# =============================================================================


@dataclass
class TrashResult:
    """Result of a trash or restore operation."""

    success: bool
    message: str
    files_affected: int = 0
    folders_affected: int = 0
    trashed_at: datetime | None = None


@dataclass
class PurgeResult:
    """Result of a purge. ``storage_keys`` are deleted from the store after commit."""

    success: bool
    message: str
    files_deleted: int = 0
    folders_deleted: int = 0
    storage_keys: list[str] = field(default_factory=list)
    storage_failures: list[str] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return self.files_deleted + self.folders_deleted


@dataclass
class TrashListing:
    """Paginated trash contents for one owner."""

    files: list[FileInfo] = field(default_factory=list)
    folders: list[FolderInfo] = field(default_factory=list)
    total_files: int = 0
    total_folders: int = 0
    page: int = 1
    page_size: int = 50

    @property
    def total_items(self) -> int:
        return self.total_files + self.total_folders

    @property
    def total_pages(self) -> int:
        return (self.total_items + self.page_size - 1) // self.page_size
