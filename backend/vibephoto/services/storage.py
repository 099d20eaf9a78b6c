"""Durable object storage for migrated job outputs.

Two backends implement the same small interface:

* ``LocalStorage`` -- files under ``{base_path}/{key}``, served by the
  ``/api/media/{key}`` route.
* ``S3Storage`` -- any S3-compatible bucket via boto3.

Keys are deterministic (see ``output_key``/``thumbnail_key``), so writing the
same job output twice overwrites rather than duplicates.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from vibephoto.config import Settings
from vibephoto.errors import StorageError

logger = logging.getLogger(__name__)


def job_prefix(owner_id: int | str, job_id: str) -> str:
    return f"owner/{owner_id}/job/{job_id}"


def output_key(owner_id: int | str, job_id: str, index: int) -> str:
    return f"{job_prefix(owner_id, job_id)}/{index}"


def thumbnail_key(owner_id: int | str, job_id: str, index: int) -> str:
    return f"{job_prefix(owner_id, job_id)}/thumb/{index}"


class StorageBackend(ABC):
    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Write ``data`` under ``key`` and return its durable URL."""

    @abstractmethod
    def delete_prefix(self, prefix: str) -> None:
        """Remove every object under ``prefix``."""


class LocalStorage(StorageBackend):
    """Local-disk backend. Objects live at ``{base_path}/{key}``."""

    def __init__(self, base_path: str, public_base_url: str = "") -> None:
        self._base = Path(base_path)
        self._public_base_url = public_base_url.rstrip("/")

    @property
    def base_path(self) -> Path:
        return self._base

    def url_for(self, key: str) -> str:
        return f"{self._public_base_url}/api/media/{key}"

    def put(self, key: str, data: bytes, content_type: str) -> str:
        dest = self.resolve(key)
        if dest is None:
            raise StorageError(f"Refusing to write outside storage root: {key}")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Local write failed for {key}: {exc}") from exc
        logger.debug("Stored %s bytes → %s", len(data), dest)
        return self.url_for(key)

    def resolve(self, key: str) -> Path | None:
        """Return the absolute path for ``key``, or None if it escapes the root."""
        root = self._base.resolve()
        path = (root / key).resolve()
        if not path.is_relative_to(root) or path == root:
            return None
        return path

    def delete_prefix(self, prefix: str) -> None:
        target = self.resolve(prefix)
        if target is not None and target.exists():
            shutil.rmtree(target, ignore_errors=True)
            logger.info("Deleted local storage prefix %s", prefix)


class S3Storage(StorageBackend):
    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str = "",
        access_key: str = "",
        secret_key: str = "",
        public_base_url: str = "",
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self._public_base_url = public_base_url.rstrip("/")
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            config=Config(signature_version="s3v4"),
        )

    def url_for(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="public, max-age=31536000, immutable",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"S3 put failed for {key}: {exc}") from exc
        return self.url_for(key)

    def delete_prefix(self, prefix: str) -> None:
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{prefix}/"):
                keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
                if keys:
                    self.client.delete_objects(
                        Bucket=self.bucket, Delete={"Objects": keys, "Quiet": True}
                    )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"S3 delete failed for {prefix}: {exc}") from exc
        logger.info("Deleted S3 prefix %s", prefix)


def build_storage(settings: Settings) -> StorageBackend:
    """Construct the backend named by ``settings.storage_backend``."""
    backend = settings.storage_backend.lower()
    if backend == "local":
        return LocalStorage(settings.storage_path, settings.media_base_url)
    if backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("S3 storage selected but S3_BUCKET is not set")
        return S3Storage(
            settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            public_base_url=settings.s3_public_base_url,
        )
    raise ValueError(f"Unknown storage backend: {settings.storage_backend!r}")
