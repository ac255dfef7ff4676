"""Storage backends — the ObjectStore protocol and its implementations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sharebox.storage.local import LocalObjectStore
from sharebox.storage.protocol import ObjectStore, with_deadline, with_write_deadline
from sharebox.storage.s3 import S3ObjectStore

if TYPE_CHECKING:
    from sharebox.config import ShareboxSettings


def create_object_store(settings: ShareboxSettings) -> ObjectStore:
    """Build the backend named by ``settings.storage_driver``."""
    if settings.storage_driver == "local":
        return LocalObjectStore(settings.local_storage_path)
    if settings.storage_driver == "s3":
        if not settings.s3_bucket:
            raise ValueError("storage_driver 's3' requires s3_bucket")
        return S3ObjectStore(
            settings.s3_bucket,
            region=settings.s3_region,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            endpoint_url=settings.s3_endpoint,
        )
    raise ValueError(f"Unsupported storage driver: {settings.storage_driver!r}")


__all__ = [
    "LocalObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "create_object_store",
    "with_deadline",
    "with_write_deadline",
]
