"""Tests for object storage integration.

Tests cover:
- Bucket management
- Uploads with content type
- Prefix deletion (batching, isolation between users, partial failures)
- Presigned URL generation

Uses moto for S3 mocking to enable fast unit tests without Docker.
"""

from unittest.mock import MagicMock

import pytest
from moto import mock_aws

from snapmeal.services.storage import (
    BucketNotFoundError,
    ObjectStoreClient,
    StorageError,
    UploadResult,
    user_prefix,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def s3_client():
    """Object store client against moto's in-process S3.

    No endpoint URL is set so moto intercepts every request.
    """
    with mock_aws():
        client = ObjectStoreClient(
            endpoint_url=None,
            access_key="test_access_key",
            secret_key="test_secret_key",  # noqa: S106
            bucket="snapmeal-users",
            region="us-east-1",
        )
        client.ensure_bucket()
        yield client


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "meals.csv"
    path.write_text("id,name\nm1,Soup\n", encoding="utf-8")
    return path


def put_objects(client: ObjectStoreClient, *keys: str) -> None:
    for key in keys:
        client._client.put_object(Bucket=client.bucket, Key=key, Body=b"data")


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------
class TestUserPrefix:
    """Tests for user_prefix."""

    def test_user_prefix(self):
        assert user_prefix("u1") == "users/u1/"


class TestEnsureBucket:
    """Tests for ensure_bucket."""

    def test_existing_bucket(self, s3_client):
        assert s3_client.ensure_bucket() is False

    def test_creates_bucket(self):
        with mock_aws():
            client = ObjectStoreClient(
                endpoint_url=None,
                access_key="test_access_key",
                secret_key="test_secret_key",  # noqa: S106
                bucket="snapmeal-other",
            )
            assert client.ensure_bucket() is True


class TestUpload:
    """Tests for upload_file."""

    def test_upload(self, s3_client, csv_file):
        result = s3_client.upload_file(
            "users/u1/exports/meals-1.csv", csv_file, content_type="text/csv"
        )

        assert result == UploadResult(
            key="users/u1/exports/meals-1.csv",
            bucket="snapmeal-users",
            size_bytes=csv_file.stat().st_size,
            content_type="text/csv",
        )
        head = s3_client._client.head_object(
            Bucket="snapmeal-users", Key="users/u1/exports/meals-1.csv"
        )
        assert head["ContentType"] == "text/csv"
        assert s3_client.list_keys("users/u1/") == ["users/u1/exports/meals-1.csv"]

    def test_upload_missing_bucket(self, csv_file):
        with mock_aws():
            client = ObjectStoreClient(
                endpoint_url=None,
                access_key="test_access_key",
                secret_key="test_secret_key",  # noqa: S106
                bucket="snapmeal-missing",
            )
            with pytest.raises(BucketNotFoundError):
                client.upload_file("users/u1/a.csv", csv_file)


class TestDeletePrefix:
    """Tests for delete_prefix."""

    def test_deletes_only_prefix(self, s3_client):
        put_objects(
            s3_client,
            "users/u1/exports/meals-1.csv",
            "users/u1/photos/p1.jpg",
            "users/u10/photos/p1.jpg",
            "users/u2/exports/meals-1.csv",
        )

        assert s3_client.delete_prefix("users/u1/") == 2

        assert s3_client.list_keys("users/u1/") == []
        assert sorted(s3_client.list_keys("users/")) == [
            "users/u10/photos/p1.jpg",
            "users/u2/exports/meals-1.csv",
        ]

    def test_nothing_to_delete(self, s3_client):
        assert s3_client.delete_prefix("users/u1/") == 0

    def test_deletes_in_batches(self, s3_client, monkeypatch):
        monkeypatch.setattr("snapmeal.services.storage.DELETE_BATCH_SIZE", 2)
        put_objects(s3_client, *(f"users/u1/photos/p{i}.jpg" for i in range(5)))

        assert s3_client.delete_prefix("users/u1/") == 5
        assert s3_client.list_keys("users/u1/") == []

    def test_refuses_empty_prefix(self, s3_client):
        put_objects(s3_client, "users/u1/a.csv")

        with pytest.raises(StorageError, match="empty prefix"):
            s3_client.delete_prefix("")

        assert s3_client.list_keys() == ["users/u1/a.csv"]

    def test_partial_failure_raises(self, s3_client):
        fake = MagicMock()
        fake.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "users/u1/a.csv"}, {"Key": "users/u1/b.csv"}]}
        ]
        fake.delete_objects.return_value = {
            "Errors": [{"Key": "users/u1/b.csv", "Code": "AccessDenied", "Message": "Denied"}]
        }
        s3_client._client = fake

        with pytest.raises(StorageError, match="users/u1/b.csv") as exc_info:
            s3_client.delete_prefix("users/u1/")

        assert exc_info.value.operation == "delete_prefix"

    def test_missing_bucket(self):
        with mock_aws():
            client = ObjectStoreClient(
                endpoint_url=None,
                access_key="test_access_key",
                secret_key="test_secret_key",  # noqa: S106
                bucket="snapmeal-missing",
            )
            with pytest.raises(BucketNotFoundError):
                client.delete_prefix("users/u1/")


class TestPresignedUrl:
    """Tests for generate_presigned_url."""

    def test_presigned_url(self, s3_client):
        put_objects(s3_client, "users/u1/exports/meals-1.csv")

        url = s3_client.generate_presigned_url(
            "users/u1/exports/meals-1.csv", expires_in=7 * 24 * 60 * 60
        )

        assert "users/u1/exports/meals-1.csv" in url
        assert "X-Amz-Expires=604800" in url
        assert "X-Amz-Signature=" in url
