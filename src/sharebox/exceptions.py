"""Custom exception hierarchy for Sharebox."""


class ShareboxError(Exception):
    """Base exception for all Sharebox errors."""


class NotFoundError(ShareboxError):
    """Raised when a file, folder, grant or share token does not exist for the caller."""


class ForbiddenError(ShareboxError):
    """Raised when a principal is not allowed to perform an operation."""


class ShareLinkInactiveError(ForbiddenError):
    """Raised when a share link has been deactivated by its owner."""


class ShareLinkExpiredError(ForbiddenError):
    """Raised when a share link is past its expiry time."""


class QuotaExhaustedError(ForbiddenError):
    """Raised when a share link has used up its download quota."""


class InvalidCredentialError(ForbiddenError):
    """Raised when a share password is missing or wrong."""


class ConflictError(ShareboxError):
    """Raised on name collisions and cyclic folder moves."""


class StorageError(ShareboxError):
    """Raised on object store failures (disk I/O, S3 errors, timeouts).

    Carries the backend name and the object key involved.
    """

    def __init__(self, message: str, *, backend: str, key: str | None = None) -> None:
        super().__init__(message)
        self.backend = backend
        self.key = key


class ObjectNotFoundError(StorageError):
    """Raised when the requested object does not exist in the store."""


class StorageTimeoutError(StorageError):
    """Raised when an object store call exceeds the caller's deadline."""


class InconsistentStateError(ShareboxError):
    """Raised when data integrity is compromised (e.g. a folder cycle in the DB)."""
