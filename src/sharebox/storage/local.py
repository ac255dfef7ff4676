"""LocalObjectStore — objects as files under a root directory."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from sharebox.exceptions import ObjectNotFoundError, StorageError

from .protocol import with_deadline, with_write_deadline

if TYPE_CHECKING:
    from datetime import timedelta

logger = logging.getLogger(__name__)


class LocalObjectStore:
    """Object store backed by the host filesystem.

    Intended for trusted, single-host deployments: ``presign`` degrades to
    the absolute file path and access is gated by the application.

    Security: ``_resolve_key()`` ensures every key stays within ``root``
    and never crosses a symlink, preventing path traversal.
    """

    name = "local"
    supports_presigned_urls = False

    def __init__(self, root: Path | str, *, create: bool = True) -> None:
        root_path = Path(root)
        if not root_path.exists():
            if not create:
                raise FileNotFoundError(f"Storage root does not exist: {root_path}")
            root_path.mkdir(parents=True, exist_ok=True)
        if not root_path.is_dir():
            raise NotADirectoryError(f"Storage root is not a directory: {root_path}")
        self.root = root_path.resolve()

    # =========================================================================
    # Key Resolution & Security
    # =========================================================================

    def _resolve_key(self, key: str) -> Path:
        """Resolve an object key to a path under ``root``."""
        if not key or "\x00" in key:
            raise StorageError("Invalid object key", backend=self.name, key=key)

        parts = PurePosixPath(key).parts
        if key.startswith("/") or any(part in ("..", ".") for part in parts):
            raise StorageError(
                f"Path traversal detected: {key}", backend=self.name, key=key
            )

        current = self.root
        for part in parts:
            current = current / part
            if current.is_symlink():
                raise StorageError(
                    f"Symlinks not allowed: {key} contains symlink at "
                    f"{current.relative_to(self.root)}",
                    backend=self.name,
                    key=key,
                )

        resolved = (self.root / Path(*parts)).resolve()
        try:
            resolved.relative_to(self.root)
        except ValueError:
            raise StorageError(
                f"Path traversal detected: {key} resolves outside storage root",
                backend=self.name,
                key=key,
            ) from None
        return resolved

    def local_path(self, key: str) -> Path:
        """Filesystem path for *key* (for streaming responses)."""
        return self._resolve_key(key)

    # =========================================================================
    # Lifecycle (no-op for local disk)
    # =========================================================================

    async def open(self) -> None:
        """No-op."""

    async def close(self) -> None:
        """No-op."""

    async def __aenter__(self) -> LocalObjectStore:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        pass

    # =========================================================================
    # Object Operations
    # =========================================================================

    async def put(
        self, key: str, data: bytes, content_type: str, *, timeout: float | None = None
    ) -> str:
        """Write *data* atomically via tempfile + replace."""
        resolved = self._resolve_key(key)

        def _write() -> str:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(resolved.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                Path(tmp_path).replace(resolved)
            except Exception:
                with contextlib.suppress(OSError):
                    Path(tmp_path).unlink()
                raise
            return str(resolved)

        async def _undo() -> None:
            await asyncio.to_thread(resolved.unlink, missing_ok=True)

        try:
            return await with_write_deadline(
                asyncio.to_thread(_write), timeout, backend=self.name, key=key, undo=_undo
            )
        except OSError as e:
            raise StorageError(
                f"Failed to write object: {e}", backend=self.name, key=key
            ) from e

    async def read(self, key: str, *, timeout: float | None = None) -> bytes:
        resolved = self._resolve_key(key)
        try:
            return await with_deadline(
                asyncio.to_thread(resolved.read_bytes), timeout, backend=self.name, key=key
            )
        except FileNotFoundError:
            raise ObjectNotFoundError(
                f"Object not found: {key}", backend=self.name, key=key
            ) from None
        except OSError as e:
            raise StorageError(
                f"Failed to read object: {e}", backend=self.name, key=key
            ) from e

    async def delete(self, key: str, *, timeout: float | None = None) -> None:
        resolved = self._resolve_key(key)
        try:
            await with_deadline(
                asyncio.to_thread(resolved.unlink, missing_ok=True),
                timeout,
                backend=self.name,
                key=key,
            )
        except OSError as e:
            raise StorageError(
                f"Failed to delete object: {e}", backend=self.name, key=key
            ) from e

    async def exists(self, key: str, *, timeout: float | None = None) -> bool:
        resolved = self._resolve_key(key)
        return await with_deadline(
            asyncio.to_thread(resolved.is_file), timeout, backend=self.name, key=key
        )

    async def presign(
        self, key: str, ttl: timedelta, *, timeout: float | None = None
    ) -> str:
        """Absolute path of the object; *ttl* does not apply to local files."""
        if not await self.exists(key, timeout=timeout):
            raise ObjectNotFoundError(
                f"Object not found: {key}", backend=self.name, key=key
            )
        return str(self._resolve_key(key))

    async def set_visibility(
        self, key: str, public: bool, *, timeout: float | None = None
    ) -> bool:
        """Local files have no ACLs; succeeds whenever the object exists."""
        try:
            found = await self.exists(key, timeout=timeout)
        except StorageError:
            logger.warning("Failed to set visibility for %s", key, exc_info=True)
            return False
        if not found:
            logger.warning("Cannot set visibility, object missing: %s", key)
        return found
