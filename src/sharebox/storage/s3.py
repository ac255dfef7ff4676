"""S3ObjectStore — objects in an S3-compatible bucket via boto3."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sharebox.exceptions import ObjectNotFoundError, StorageError

from .protocol import with_deadline, with_write_deadline

if TYPE_CHECKING:
    from datetime import timedelta

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code", "")) in _NOT_FOUND_CODES


class S3ObjectStore:
    """Object store backed by S3 or any S3-compatible service (MinIO, R2).

    boto3 is synchronous; every call runs in a worker thread.  Presigned
    URLs are signed locally and validated by the bucket itself, so issued
    URLs need no tracking.
    """

    name = "s3"
    supports_presigned_urls = True

    def __init__(
        self,
        bucket: str,
        *,
        client: Any = None,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("S3ObjectStore requires a bucket name")
        self.bucket = bucket
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                endpoint_url=endpoint_url,
            )
        self._client = client

    async def _call(
        self,
        key: str,
        timeout: float | None,
        method: str,
        *,
        writes: bool = False,
        **params: Any,
    ) -> Any:
        """Run one client method in a thread.

        With *writes*, a call that outlives *timeout* is awaited and its
        object deleted again before the timeout is raised.
        """
        fn = getattr(self._client, method)
        call = asyncio.to_thread(fn, Bucket=self.bucket, Key=key, **params)
        try:
            if writes:
                return await with_write_deadline(
                    call,
                    timeout,
                    backend=self.name,
                    key=key,
                    undo=lambda: asyncio.to_thread(
                        self._client.delete_object, Bucket=self.bucket, Key=key
                    ),
                )
            return await with_deadline(call, timeout, backend=self.name, key=key)
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(
                    f"Object not found: {key}", backend=self.name, key=key
                ) from e
            raise StorageError(
                f"S3 {method} failed: {e}", backend=self.name, key=key
            ) from e
        except BotoCoreError as e:
            raise StorageError(
                f"S3 {method} failed: {e}", backend=self.name, key=key
            ) from e

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """No-op — the boto3 client connects lazily."""

    async def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # Object Operations
    # ------------------------------------------------------------------

    async def put(
        self, key: str, data: bytes, content_type: str, *, timeout: float | None = None
    ) -> str:
        await self._call(
            key, timeout, "put_object", writes=True, Body=data, ContentType=content_type
        )
        return f"{self._client.meta.endpoint_url}/{self.bucket}/{key}"

    async def read(self, key: str, *, timeout: float | None = None) -> bytes:
        response = await self._call(key, timeout, "get_object")
        body = response["Body"]
        try:
            return await asyncio.to_thread(body.read)
        finally:
            body.close()

    async def delete(self, key: str, *, timeout: float | None = None) -> None:
        try:
            await self._call(key, timeout, "delete_object")
        except ObjectNotFoundError:
            logger.debug("Delete of missing object %s ignored", key)

    async def exists(self, key: str, *, timeout: float | None = None) -> bool:
        try:
            await self._call(key, timeout, "head_object")
        except ObjectNotFoundError:
            return False
        return True

    async def presign(
        self, key: str, ttl: timedelta, *, timeout: float | None = None
    ) -> str:
        try:
            return await with_deadline(
                asyncio.to_thread(
                    self._client.generate_presigned_url,
                    "get_object",
                    Params={"Bucket": self.bucket, "Key": key},
                    ExpiresIn=int(ttl.total_seconds()),
                ),
                timeout,
                backend=self.name,
                key=key,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Failed to generate presigned URL: {e}", backend=self.name, key=key
            ) from e

    async def set_visibility(
        self, key: str, public: bool, *, timeout: float | None = None
    ) -> bool:
        acl = "public-read" if public else "private"
        try:
            await self._call(key, timeout, "put_object_acl", ACL=acl)
        except StorageError:
            logger.warning("Failed to set object ACL %s on %s", acl, key, exc_info=True)
            return False
        return True
