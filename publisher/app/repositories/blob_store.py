from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

from publisher.app.config import AppSettings

LOGGER = logging.getLogger("mdx_publisher.blob_store")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class BlobStoreWriteError(Exception):
    """Raised when a blob store rejects or fails a write."""

    def __init__(self, message: str, *, key: str) -> None:
        super().__init__(message)
        self.key = key


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        ...


class S3BlobStore:
    """Writes objects to an S3-compatible bucket (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(self, *, client: Any, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type or DEFAULT_CONTENT_TYPE,
            )
        except Exception as exc:
            raise BlobStoreWriteError(
                f"Failed to write s3://{self._bucket}/{key}: {exc}",
                key=key,
            ) from exc
        LOGGER.debug(
            "blob stored backend=s3 bucket=%s key=%s bytes=%s",
            self._bucket,
            key,
            len(data),
        )


class FilesystemBlobStore:
    """Writes objects below a local directory, keyed by their relative path.

    The content type is not persisted; whatever serves the directory derives it
    from the file extension.
    """

    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        _ = content_type
        target = self._resolve_key(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise BlobStoreWriteError(f"Failed to write {target}: {exc}", key=key) from exc
        LOGGER.debug("blob stored backend=filesystem path=%s bytes=%s", target, len(data))

    def _resolve_key(self, key: str) -> Path:
        relative = PurePosixPath(key)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise BlobStoreWriteError(f"Refusing to write outside blob root: {key}", key=key)
        return self._root_dir.joinpath(*relative.parts)


def create_s3_client(settings: AppSettings) -> Any:
    import boto3

    session_kwargs: dict[str, str] = {}
    if settings.blob_store_access_key_id and settings.blob_store_secret_access_key:
        session_kwargs["aws_access_key_id"] = settings.blob_store_access_key_id
        session_kwargs["aws_secret_access_key"] = settings.blob_store_secret_access_key
    if settings.blob_store_region:
        session_kwargs["region_name"] = settings.blob_store_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3", endpoint_url=settings.blob_store_endpoint_url)


def build_blob_store(settings: AppSettings) -> BlobStore:
    if settings.blob_store_backend == "s3":
        assert settings.blob_store_bucket is not None
        return S3BlobStore(client=create_s3_client(settings), bucket=settings.blob_store_bucket)
    return FilesystemBlobStore(settings.blob_store_dir)
