"""
Storage abstraction for S3-compatible public buckets and in-memory testing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Protocol

import boto3
from botocore.config import Config

from collector.errors import ValidationError

CARD_IMAGES_BUCKET = "card-images"
WALL_POSTS_BUCKET = "wall-posts"
BUCKETS = (CARD_IMAGES_BUCKET, WALL_POSTS_BUCKET)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def require_bucket(bucket: str) -> str:
    if bucket not in BUCKETS:
        raise ValidationError(f"Unknown storage bucket: {bucket}")
    return bucket


def object_path(owner_id: str, content_type: str) -> str:
    """Paths are namespaced by the uploading user."""
    extension = _EXTENSIONS.get(content_type, "bin")
    return f"{owner_id}/{uuid.uuid4().hex}.{extension}"


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> str:
        ...

    def public_url(self, bucket: str, path: str) -> str:
        ...

    def get_bytes(self, bucket: str, path: str) -> bytes:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage/v1/object/public"
    stored_objects: dict = field(default_factory=dict)

    def upload_bytes(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> str:
        require_bucket(bucket)
        self.stored_objects[(bucket, path)] = (data, content_type)
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.base_url}/{bucket}/{path}"

    def get_bytes(self, bucket: str, path: str) -> bytes:
        stored = self.stored_objects.get((bucket, path))
        if stored is None:
            raise FileNotFoundError(f"{bucket}/{path}")
        return stored[0]


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client. Bucket names map one-to-one onto the
    provider's buckets, which are configured for public reads.
    """

    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_bytes(
        self, bucket: str, path: str, data: bytes, content_type: str
    ) -> str:
        require_bucket(bucket)
        self._client.put_object(
            Bucket=bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
        )
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/{bucket}/{path}"

    def get_bytes(self, bucket: str, path: str) -> bytes:
        response = self._client.get_object(Bucket=bucket, Key=path)
        return response["Body"].read()
