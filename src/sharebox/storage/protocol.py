"""ObjectStore protocol — the byte-level storage contract.

Metadata lives in the relational store; an ``ObjectStore`` only holds
object bytes under opaque keys.  Every call accepts a ``timeout`` (seconds)
and raises ``StorageTimeoutError`` when it is exceeded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

from sharebox.exceptions import StorageTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import timedelta

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class ObjectStore(Protocol):
    """Uniform interface over a storage backend (local disk, S3)."""

    name: str
    """Backend name reported in ``StorageError.backend``."""

    supports_presigned_urls: bool
    """True when ``presign`` yields a URL the backend validates itself."""

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def put(
        self, key: str, data: bytes, content_type: str, *, timeout: float | None = None
    ) -> str:
        """Store *data* under *key* and return a locator (path or URL)."""
        ...

    async def read(self, key: str, *, timeout: float | None = None) -> bytes: ...

    async def delete(self, key: str, *, timeout: float | None = None) -> None:
        """Remove *key*. A missing object is not an error."""
        ...

    async def exists(self, key: str, *, timeout: float | None = None) -> bool: ...

    async def presign(
        self, key: str, ttl: timedelta, *, timeout: float | None = None
    ) -> str:
        """Time-bounded download locator for *key*."""
        ...

    async def set_visibility(
        self, key: str, public: bool, *, timeout: float | None = None
    ) -> bool:
        """Best-effort ACL change. Logs and returns False on failure, never raises."""
        ...


async def with_deadline(
    aw: Awaitable[T], timeout: float | None, *, backend: str, key: str | None
) -> T:
    """Await *aw*, converting a missed deadline into ``StorageTimeoutError``."""
    if timeout is None:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout)
    except TimeoutError:
        raise StorageTimeoutError(
            f"{backend} operation timed out after {timeout}s", backend=backend, key=key
        ) from None


async def with_write_deadline(
    aw: Awaitable[T],
    timeout: float | None,
    *,
    backend: str,
    key: str,
    undo: Callable[[], Awaitable[object]],
) -> T:
    """Await a write, undoing it if it outlives *timeout*.

    Worker threads cannot be cancelled, so on timeout the write is left to
    finish and then *undo* removes whatever it stored before
    ``StorageTimeoutError`` is raised.  Nothing written by a timed-out call
    survives it.
    """
    if timeout is None:
        return await aw
    task = asyncio.ensure_future(aw)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except TimeoutError:
        pass

    try:
        await task
    except Exception:
        logger.warning("Timed-out %s write of %s also failed", backend, key, exc_info=True)
    else:
        await undo()
        logger.warning("Removed %s object %s written after its deadline", backend, key)
    raise StorageTimeoutError(
        f"{backend} write timed out after {timeout}s", backend=backend, key=key
    )
