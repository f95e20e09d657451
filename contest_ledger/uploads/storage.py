"""
Object storage abstraction for uploaded images.

file:// support (local filesystem, development and tests)
s3:// support (S3-compatible buckets such as R2 or MinIO)

Storage is selected from a URI. A single ``put_object`` is the unit of
atomicity: there is no multi-object transaction and no compensating
delete.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import structlog

from ..config import Settings

logger = structlog.get_logger()


class StorageError(Exception):
    """Raised when the object store rejects or fails a write."""


class ObjectStore(ABC):
    """Abstract base class for object storage."""

    def __init__(self, public_base_url: str):
        self.public_base_url = public_base_url.rstrip("/")

    @abstractmethod
    def put_object(self, key: str, body: bytes, content_type: str) -> str:
        """Store bytes under ``key`` and return the public URL."""
        pass

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"


class LocalObjectStore(ObjectStore):
    """Local filesystem object store (file:// URIs).

    Structure:
        {base_path}/{prefix}/{owner_id}/{timestamp}-{token}-{name}.webp
    """

    def __init__(self, base_path: Path, public_base_url: str):
        super().__init__(public_base_url)
        self.base_path = base_path

    def path_for(self, key: str) -> Optional[Path]:
        """Filesystem path for a key, or None if it escapes the base path."""
        base = self.base_path.resolve()
        path = (base / key).resolve()
        if base != path and base not in path.parents:
            return None
        return path

    def put_object(self, key: str, body: bytes, content_type: str) -> str:
        path = self.path_for(key)
        if path is None:
            raise StorageError(f"Invalid object key: {key}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.debug("Object stored", key=key, bytes=len(body))
        return self.public_url(key)


class S3ObjectStore(ObjectStore):
    """S3-compatible object store (s3:// URIs)."""

    def __init__(self, client: Any, bucket: str, public_base_url: str, prefix: str = ""):
        super().__init__(public_base_url)
        self.client = client
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def put_object(self, key: str, body: bytes, content_type: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        object_key = self._object_key(key)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=body,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to store {object_key}: {e}") from e
        logger.debug("Object stored", bucket=self.bucket, key=object_key, bytes=len(body))
        return self.public_url(object_key)


def _build_s3_client(settings: Settings):
    import boto3

    endpoint = settings.s3_endpoint_url
    if endpoint and not endpoint.startswith("http"):
        endpoint = f"https://{endpoint}"

    return boto3.client(
        "s3",
        region_name=settings.s3_region or None,
        endpoint_url=endpoint,
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
    )


def create_object_store(settings: Settings) -> ObjectStore:
    """Factory function to create the ObjectStore for ``settings.storage_uri``.

    Raises:
        ValueError: If the URI scheme is not supported
    """
    parsed = urlparse(settings.storage_uri)

    if parsed.scheme == "file":
        return LocalObjectStore(Path(parsed.path), settings.storage_public_base_url)

    elif parsed.scheme == "s3":
        if not parsed.netloc:
            raise ValueError(f"S3 storage URI is missing a bucket: {settings.storage_uri}")
        return S3ObjectStore(
            client=_build_s3_client(settings),
            bucket=parsed.netloc,
            public_base_url=settings.storage_public_base_url,
            prefix=parsed.path,
        )

    else:
        raise ValueError(
            f"Unsupported storage scheme: {parsed.scheme}. "
            f"Supported: file://, s3://"
        )
