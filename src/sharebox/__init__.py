"""Sharebox — file hosting with share links, collaborators, and a trash bin."""

__version__ = "0.1.0"

from sharebox._sharebox import Sharebox
from sharebox.config import ShareboxSettings, configure_logging, get_settings
from sharebox.events import AuditAction, AuditEvent, AuditOutcome, EventBus, log_audit_event
from sharebox.exceptions import (
    ConflictError,
    ForbiddenError,
    InconsistentStateError,
    InvalidCredentialError,
    NotFoundError,
    ObjectNotFoundError,
    QuotaExhaustedError,
    ShareboxError,
    ShareLinkExpiredError,
    ShareLinkInactiveError,
    StorageError,
    StorageTimeoutError,
)
from sharebox.permissions import Principal, ResourceKind, Role, SharePermission, can_access
from sharebox.storage import LocalObjectStore, ObjectStore, S3ObjectStore, create_object_store
from sharebox.types import (
    AccessDecision,
    BatchUploadResult,
    DenialReason,
    DownloadGrant,
    DownloadMode,
    FileInfo,
    FolderInfo,
    FolderListing,
    PurgeResult,
    SharedAsset,
    ShareDownloadResult,
    ShareLinkInfo,
    ShareViewResult,
    TrashListing,
    TrashResult,
    UploadItem,
)

__all__ = [
    "AccessDecision",
    "AuditAction",
    "AuditEvent",
    "AuditOutcome",
    "BatchUploadResult",
    "ConflictError",
    "DenialReason",
    "DownloadGrant",
    "DownloadMode",
    "EventBus",
    "FileInfo",
    "FolderInfo",
    "FolderListing",
    "ForbiddenError",
    "InconsistentStateError",
    "InvalidCredentialError",
    "LocalObjectStore",
    "NotFoundError",
    "ObjectNotFoundError",
    "ObjectStore",
    "Principal",
    "PurgeResult",
    "QuotaExhaustedError",
    "ResourceKind",
    "Role",
    "S3ObjectStore",
    "ShareDownloadResult",
    "ShareLinkExpiredError",
    "ShareLinkInactiveError",
    "ShareLinkInfo",
    "SharePermission",
    "ShareViewResult",
    "SharedAsset",
    "Sharebox",
    "ShareboxError",
    "ShareboxSettings",
    "StorageError",
    "StorageTimeoutError",
    "TrashListing",
    "TrashResult",
    "UploadItem",
    "can_access",
    "configure_logging",
    "create_object_store",
    "get_settings",
    "log_audit_event",
]
