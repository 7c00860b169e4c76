"""Object store integration for per-user artifacts.

This module provides an S3-compatible client wrapper bound to the user
bucket. Everything stored for a user lives under ``users/{user_id}/``:
- Data exports (``users/{user_id}/exports/meals-{timestamp}.csv``)
- Anything else the app writes for that user (photos, thumbnails)

Example:
    from snapmeal.services.storage import ObjectStoreClient
    from snapmeal.core.settings import get_settings

    settings = get_settings()
    client = ObjectStoreClient.from_settings(settings.s3)

    client.upload_file("users/u1/exports/meals.csv", "/tmp/meals.csv", content_type="text/csv")
    url = client.generate_presigned_url("users/u1/exports/meals.csv", expires_in=3600)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    from snapmeal.core.config import S3Settings

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000


def user_prefix(user_id: str) -> str:
    """Key prefix under which all of a user's objects are stored."""
    return f"users/{user_id}/"


@dataclass(frozen=True)
class UploadResult:
    """Result of an upload operation.

    Attributes:
        key: The object key in the bucket.
        bucket: The bucket name.
        size_bytes: Size of the uploaded file in bytes.
        content_type: MIME type recorded on the object.
    """

    key: str
    bucket: str
    size_bytes: int
    content_type: str


class StorageError(Exception):
    """Base exception for storage operations.

    Attributes:
        message: Human-readable error description.
        bucket: The bucket involved in the operation.
        key: The object key or prefix involved (if applicable).
        operation: The operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.bucket = bucket
        self.key = key
        self.operation = operation
        super().__init__(message)


class BucketNotFoundError(StorageError):
    """Raised when a bucket does not exist."""


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class ObjectStoreClient:
    """S3-compatible object storage client for the user bucket.

    The client uses synchronous boto3 under the hood; async callers run its
    methods in the default executor.
    """

    def __init__(
        self,
        endpoint_url: str | None,
        access_key: str,
        secret_key: str,
        bucket: str,
        region: str = "us-east-1",
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        """Initialize the object store client.

        Args:
            endpoint_url: S3-compatible endpoint URL, or None for AWS.
            access_key: S3 access key ID.
            secret_key: S3 secret access key.
            bucket: Bucket holding per-user objects.
            region: AWS region (use us-east-1 for MinIO).
            connect_timeout: Connection timeout in seconds.
            read_timeout: Read timeout in seconds.
            max_retries: Maximum retry attempts for transient failures.
        """
        self._endpoint_url = endpoint_url
        self._region = region
        self.bucket = bucket

        config = Config(
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"max_attempts": max_retries, "mode": "standard"},
            signature_version="s3v4",
        )

        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            region_name=region,
            config=config,
        )

        logger.debug(
            "Initialized ObjectStoreClient for endpoint=%s region=%s bucket=%s",
            endpoint_url,
            region,
            bucket,
        )

    @classmethod
    def from_settings(cls, settings: S3Settings) -> ObjectStoreClient:
        """Create client from S3Settings configuration."""
        return cls(
            endpoint_url=settings.endpoint or None,
            access_key=settings.access_key.get_secret_value(),
            secret_key=settings.secret_key.get_secret_value(),
            bucket=settings.bucket,
            region=settings.region,
        )

    def ensure_bucket(self) -> bool:
        """Ensure the bucket exists, creating it if necessary.

        Returns:
            True if bucket was created, False if it already existed.

        Raises:
            StorageError: If bucket creation fails.
        """
        try:
            self._client.head_bucket(Bucket=self.bucket)
            logger.debug("Bucket %s already exists", self.bucket)
            return False
        except ClientError as e:
            if _error_code(e) not in ("404", "NoSuchBucket"):
                raise StorageError(
                    f"Failed to check bucket existence: {e}",
                    bucket=self.bucket,
                    operation="head_bucket",
                ) from e

        try:
            # For us-east-1, don't specify LocationConstraint
            if self._region == "us-east-1":
                self._client.create_bucket(Bucket=self.bucket)
            else:
                self._client.create_bucket(
                    Bucket=self.bucket,
                    CreateBucketConfiguration={"LocationConstraint": self._region},
                )
        except ClientError as e:
            raise StorageError(
                f"Failed to create bucket: {e}",
                bucket=self.bucket,
                operation="create_bucket",
            ) from e

        logger.info("Created bucket: %s", self.bucket)
        return True

    def upload_file(
        self,
        key: str,
        path: str | os.PathLike[str],
        *,
        content_type: str = "application/octet-stream",
    ) -> UploadResult:
        """Upload a local file to ``key``.

        Args:
            key: Destination object key.
            path: Local file to upload.
            content_type: MIME type to record on the object.

        Returns:
            UploadResult describing the stored object.

        Raises:
            BucketNotFoundError: If the bucket does not exist.
            StorageError: If the upload fails.
        """
        size_bytes = os.path.getsize(path)

        try:
            self._client.upload_file(
                Filename=os.fspath(path),
                Bucket=self.bucket,
                Key=key,
                ExtraArgs={"ContentType": content_type},
            )
        except (ClientError, S3UploadFailedError) as e:
            # upload_file wraps client errors, so match on the message
            if "NoSuchBucket" in str(e):
                raise BucketNotFoundError(
                    f"Bucket does not exist: {self.bucket}",
                    bucket=self.bucket,
                    key=key,
                    operation="upload",
                ) from e
            raise StorageError(
                f"Upload failed: {e}",
                bucket=self.bucket,
                key=key,
                operation="upload",
            ) from e

        logger.debug("Uploaded %s/%s (%d bytes)", self.bucket, key, size_bytes)
        return UploadResult(
            key=key,
            bucket=self.bucket,
            size_bytes=size_bytes,
            content_type=content_type,
        )

    def list_keys(self, prefix: str = "") -> list[str]:
        """List every object key under ``prefix``.

        Raises:
            BucketNotFoundError: If the bucket does not exist.
            StorageError: If listing fails.
        """
        keys: list[str] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except ClientError as e:
            if _error_code(e) == "NoSuchBucket":
                raise BucketNotFoundError(
                    f"Bucket does not exist: {self.bucket}",
                    bucket=self.bucket,
                    key=prefix,
                    operation="list_objects",
                ) from e
            raise StorageError(
                f"List objects failed: {e}",
                bucket=self.bucket,
                key=prefix,
                operation="list_objects",
            ) from e
        return keys

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object whose key starts with ``prefix``.

        An empty prefix is refused rather than wiping the bucket.

        Args:
            prefix: Key prefix, e.g. ``users/u1/``.

        Returns:
            Number of objects deleted.

        Raises:
            StorageError: If listing or any batch delete fails.
        """
        if not prefix:
            raise StorageError(
                "Refusing to delete with an empty prefix",
                bucket=self.bucket,
                operation="delete_prefix",
            )

        keys = self.list_keys(prefix)
        deleted = 0
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                response: dict[str, Any] = self._client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except ClientError as e:
                raise StorageError(
                    f"Delete failed: {e}",
                    bucket=self.bucket,
                    key=prefix,
                    operation="delete_prefix",
                ) from e

            errors = response.get("Errors", [])
            if errors:
                first = errors[0]
                raise StorageError(
                    f"Delete failed for {len(errors)} object(s), "
                    f"first {first.get('Key')}: {first.get('Message')}",
                    bucket=self.bucket,
                    key=prefix,
                    operation="delete_prefix",
                )
            deleted += len(batch)

        logger.info("Deleted %d object(s) under %s/%s", deleted, self.bucket, prefix)
        return deleted

    def generate_presigned_url(self, key: str, *, expires_in: int = 3600) -> str:
        """Generate a presigned GET URL for ``key``.

        Args:
            key: Object key.
            expires_in: URL lifetime in seconds (S3 caps this at 7 days).

        Returns:
            Presigned URL string.

        Raises:
            StorageError: If URL generation fails.
        """
        try:
            url = self._client.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except ClientError as e:
            raise StorageError(
                f"Presigned URL generation failed: {e}",
                bucket=self.bucket,
                key=key,
                operation="generate_presigned_url",
            ) from e

        logger.debug(
            "Generated presigned URL for %s/%s (expires in %ds)",
            self.bucket,
            key,
            expires_in,
        )
        return url
