from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from publisher.app.config import AppSettings
from publisher.app.repositories import blob_store as blob_store_module
from publisher.app.repositories.blob_store import (
    BlobStoreWriteError,
    FilesystemBlobStore,
    S3BlobStore,
    build_blob_store,
)


class _FakeS3Client:
    def __init__(self, *, error: Exception | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self._error = error

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        if self._error is not None:
            raise self._error
        self.calls.append(kwargs)
        return {"ETag": "etag"}


def test_s3_blob_store_puts_object_with_content_type() -> None:
    client = _FakeS3Client()
    store = S3BlobStore(client=client, bucket="blog-images")

    store.put("images/a.png-1.png", b"data", "image/jpeg")

    assert client.calls == [
        {
            "Bucket": "blog-images",
            "Key": "images/a.png-1.png",
            "Body": b"data",
            "ContentType": "image/jpeg",
        }
    ]


def test_s3_blob_store_wraps_backend_errors() -> None:
    store = S3BlobStore(client=_FakeS3Client(error=RuntimeError("AccessDenied")), bucket="b")

    with pytest.raises(BlobStoreWriteError, match="AccessDenied") as excinfo:
        store.put("images/x.png", b"data")

    assert excinfo.value.key == "images/x.png"
    assert isinstance(excinfo.value.__cause__, RuntimeError)


def test_filesystem_blob_store_writes_nested_keys(tmp_path: Path) -> None:
    store = FilesystemBlobStore(tmp_path / "blobs")

    store.put("images/pic.png-abc.png", b"\x89PNG", "image/png")

    assert (tmp_path / "blobs" / "images" / "pic.png-abc.png").read_bytes() == b"\x89PNG"


@pytest.mark.parametrize("key", ["../escape.png", "/abs/path.png", ""])
def test_filesystem_blob_store_rejects_keys_outside_root(tmp_path: Path, key: str) -> None:
    store = FilesystemBlobStore(tmp_path)

    with pytest.raises(BlobStoreWriteError):
        store.put(key, b"data")


def test_build_blob_store_selects_backend(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    filesystem_settings = AppSettings(blob_store_dir=tmp_path / "blobs")
    filesystem_store = build_blob_store(filesystem_settings)
    assert isinstance(filesystem_store, FilesystemBlobStore)
    assert filesystem_store.root_dir == (tmp_path / "blobs").resolve()

    created_with: list[AppSettings] = []

    def _fake_create_s3_client(settings: AppSettings) -> _FakeS3Client:
        created_with.append(settings)
        return _FakeS3Client()

    monkeypatch.setattr(blob_store_module, "create_s3_client", _fake_create_s3_client)
    s3_settings = AppSettings(
        blob_store_backend="s3",
        blob_store_bucket="blog-images",
        public_base_url="https://pub.example",
    )
    s3_store = build_blob_store(s3_settings)
    assert isinstance(s3_store, S3BlobStore)
    assert s3_store.bucket == "blog-images"
    assert created_with == [s3_settings]
