"""
Storage abstraction for S3-compatible buckets and in-memory testing.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class ObjectMetadata:
    size: int
    last_modified: datetime
    etag: str


class StorageClient(Protocol):
    """Defines the operations the document store needs from object storage."""

    def get_bytes(self, path: str) -> Optional[bytes]:
        ...

    def head(self, path: str) -> Optional[ObjectMetadata]:
        ...

    def put_bytes(self, path: str, body: bytes, content_type: str) -> None:
        ...

    def delete(self, path: str) -> None:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def get_bytes(self, path: str) -> Optional[bytes]:
        stored = self.stored_objects.get(path)
        if stored is None:
            return None
        return stored[0]

    def head(self, path: str) -> Optional[ObjectMetadata]:
        stored = self.stored_objects.get(path)
        if stored is None:
            return None
        body, modified = stored
        return ObjectMetadata(
            size=len(body),
            last_modified=modified,
            etag=hashlib.md5(body).hexdigest(),
        )

    def put_bytes(self, path: str, body: bytes, content_type: str) -> None:
        self.stored_objects[path] = (body, datetime.now(timezone.utc))

    def delete(self, path: str) -> None:
        self.stored_objects.pop(path, None)

    def reset(self) -> None:
        self.stored_objects.clear()


def _is_missing(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _MISSING_CODES


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (R2, COS, MinIO, AWS).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def get_bytes(self, path: str) -> Optional[bytes]:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if _is_missing(e):
                return None
            raise
        return response["Body"].read()

    def head(self, path: str) -> Optional[ObjectMetadata]:
        try:
            response = self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if _is_missing(e):
                return None
            raise
        return ObjectMetadata(
            size=response["ContentLength"],
            last_modified=response["LastModified"],
            etag=response["ETag"].strip('"'),
        )

    def put_bytes(self, path: str, body: bytes, content_type: str) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=body,
            ContentType=content_type,
        )

    def delete(self, path: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=path)
