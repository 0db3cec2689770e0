from __future__ import annotations

import asyncio
import re
import threading
from collections.abc import Mapping

import httpx
import pytest

from publisher.app.repositories.blob_store import BlobStoreWriteError
from publisher.app.services import image_migrator as image_migrator_module
from publisher.app.services.image_migrator import (
    ImageMigrator,
    build_storage_key,
    extract_image_urls,
    image_file_name,
    migrate_images,
)
from publisher.app.telemetry import TelemetryClient

PUBLIC_BASE_URL = "https://r2.example.com"


class _MemoryBlobStore:
    def __init__(self, *, fail_keys_containing: str | None = None) -> None:
        self.writes: list[tuple[str, bytes, str | None]] = []
        self._fail_keys_containing = fail_keys_containing
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str | None = None) -> None:
        if self._fail_keys_containing is not None and self._fail_keys_containing in key:
            raise BlobStoreWriteError("bucket rejected write", key=key)
        with self._lock:
            self.writes.append((key, data, content_type))


class _RecordingHandler:
    def __init__(self, responses: dict[str, httpx.Response] | None = None) -> None:
        self.requested: list[str] = []
        self._responses = responses or {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if url in self._responses:
            return self._responses[url]
        return httpx.Response(200, content=b"\x89PNG-bytes", headers={"content-type": "image/png"})


def _embed(url: str) -> str:
    return f"![{url}]({url})"


def _migrator(
    store: _MemoryBlobStore,
    handler: _RecordingHandler,
) -> ImageMigrator:
    return ImageMigrator(
        store=store,
        public_base_url=PUBLIC_BASE_URL,
        transport=httpx.MockTransport(handler),
    )


def test_body_without_embeds_is_returned_without_io() -> None:
    store = _MemoryBlobStore()
    handler = _RecordingHandler()
    body = "# Test\nNo images here. ![alt text](https://example.com/image.png)"

    result = asyncio.run(_migrator(store, handler).migrate(body))

    assert result == body
    assert handler.requested == []
    assert store.writes == []


def test_embed_is_uploaded_and_rewritten(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(image_migrator_module, "uuid4", lambda: "test-uuid-12345")
    store = _MemoryBlobStore()
    handler = _RecordingHandler()
    image_url = "https://example.com/image.png"

    result = asyncio.run(_migrator(store, handler).migrate(f"# Test\n{_embed(image_url)}"))

    expected_url = f"{PUBLIC_BASE_URL}/images/image.png-test-uuid-12345.png"
    assert result == f"# Test\n{_embed(expected_url)}"
    assert handler.requested == [image_url]
    assert store.writes == [
        ("images/image.png-test-uuid-12345.png", b"\x89PNG-bytes", "image/png"),
    ]


def test_repeated_embed_is_fetched_and_stored_once() -> None:
    store = _MemoryBlobStore()
    handler = _RecordingHandler()
    image_url = "https://example.com/image.png"
    body = f"{_embed(image_url)}\n\nsame again: {_embed(image_url)}\n{_embed(image_url)}"

    result = asyncio.run(_migrator(store, handler).migrate(body))

    assert handler.requested == [image_url]
    assert len(store.writes) == 1
    public_url = f"{PUBLIC_BASE_URL}/{store.writes[0][0]}"
    assert result.count(_embed(public_url)) == 3
    assert image_url not in result


def test_failed_fetch_leaves_that_embed_untouched() -> None:
    store = _MemoryBlobStore()
    broken_url = "https://example.com/missing.png"
    good_url = "https://example.com/ok.jpg"
    handler = _RecordingHandler({broken_url: httpx.Response(404)})
    body = f"{_embed(broken_url)}\n{_embed(good_url)}\n{_embed(broken_url)}"

    report = asyncio.run(_migrator(store, handler).migrate_with_report(body))

    lines = report.body.split("\n")
    assert lines[0] == _embed(broken_url)
    assert lines[2] == _embed(broken_url)
    assert lines[1].startswith(f"![{PUBLIC_BASE_URL}/images/ok.jpg-")
    assert len(store.writes) == 1
    assert store.writes[0][0].startswith("images/ok.jpg-")
    assert report.failed_urls == (broken_url,)
    assert [outcome.source_url for outcome in report.uploads] == [good_url]


def test_network_error_is_isolated_to_one_image() -> None:
    store = _MemoryBlobStore()
    failing_url = "https://unreachable.example/a.png"
    good_url = "https://example.com/b.png"

    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "unreachable.example":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"img")

    migrator = ImageMigrator(
        store=store,
        public_base_url=PUBLIC_BASE_URL,
        transport=httpx.MockTransport(_handler),
    )
    report = asyncio.run(migrator.migrate_with_report(f"{_embed(failing_url)} {_embed(good_url)}"))

    assert _embed(failing_url) in report.body
    assert _embed(good_url) not in report.body
    assert report.failed_urls == (failing_url,)
    assert len(store.writes) == 1
    # Missing content-type header falls back to image/png.
    assert store.writes[0][2] == "image/png"


def test_store_write_failure_skips_only_that_image() -> None:
    store = _MemoryBlobStore(fail_keys_containing="reject.png")
    handler = _RecordingHandler()
    rejected_url = "https://example.com/reject.png"
    kept_url = "https://example.com/keep.png"

    report = asyncio.run(
        _migrator(store, handler).migrate_with_report(f"{_embed(rejected_url)}\n{_embed(kept_url)}")
    )

    assert report.body.split("\n")[0] == _embed(rejected_url)
    assert report.failed_urls == (rejected_url,)
    assert len(report.uploads) == 1


def test_unexpected_failure_returns_body_unchanged(monkeypatch: pytest.MonkeyPatch) -> None:
    def _explode(body: str) -> list[str]:
        raise RuntimeError("boom")

    monkeypatch.setattr(image_migrator_module, "extract_image_urls", _explode)
    body = _embed("https://example.com/image.png")

    result = asyncio.run(_migrator(_MemoryBlobStore(), _RecordingHandler()).migrate(body))

    assert result == body


def test_migrate_images_function_uses_given_store() -> None:
    store = _MemoryBlobStore()
    image_url = "https://example.com/photo.webp?width=400"

    result = asyncio.run(
        migrate_images(
            _embed(image_url),
            store,
            PUBLIC_BASE_URL + "/",
            transport=httpx.MockTransport(_RecordingHandler()),
        )
    )

    assert re.fullmatch(
        r"!\[(https://r2\.example\.com/images/photo\.webp-[0-9a-f-]+\.png)\]\(\1\)",
        result,
    )
    assert len(store.writes) == 1


def test_extract_image_urls_requires_matching_https_alt_and_target() -> None:
    body = "\n".join(
        [
            _embed("https://a.example/1.png"),
            "![https://a.example/1.png](https://other.example/x.png)",
            _embed("http://insecure.example/2.png"),
            _embed("https://a.example/3.png"),
            _embed("https://a.example/1.png"),
        ]
    )
    assert extract_image_urls(body) == ["https://a.example/1.png", "https://a.example/3.png"]


def test_storage_keys_are_unique_and_named_after_source() -> None:
    url = "https://prod-files-secure.s3.amazonaws.com/abc/def/diagram.png?X-Amz-Signature=1"
    first = build_storage_key(url)
    second = build_storage_key(url)
    assert first != second
    assert first.startswith("images/diagram.png-")
    assert first.endswith(".png")


def test_image_file_name_is_synthesized_when_path_is_empty() -> None:
    assert image_file_name("https://example.com/").startswith("image-")
    assert image_file_name("https://example.com/a/b.gif?x=1") == "b.gif"


def test_fetches_run_concurrently_and_failures_do_not_block_others() -> None:
    slow_url = "https://example.com/slow.png"
    failing_url = "https://example.com/failing.png"
    store = _MemoryBlobStore()

    async def _run() -> str:
        failing_requested = asyncio.Event()

        async def _handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == slow_url:
                # Only answers once the other fetch is in flight at the same time.
                await asyncio.wait_for(failing_requested.wait(), timeout=5)
                return httpx.Response(200, content=b"slow-bytes")
            failing_requested.set()
            return httpx.Response(500)

        migrator = ImageMigrator(
            store=store,
            public_base_url=PUBLIC_BASE_URL,
            transport=httpx.MockTransport(_handler),
        )
        return await migrator.migrate(f"{_embed(slow_url)}\n{_embed(failing_url)}")

    result = asyncio.run(_run())

    assert [data for _, data, _ in store.writes] == [b"slow-bytes"]
    first_line, second_line = result.split("\n")
    assert first_line.startswith(f"![{PUBLIC_BASE_URL}/images/slow.png-")
    assert second_line == _embed(failing_url)


def test_failed_image_is_reported_without_signed_query() -> None:
    events: list[tuple[str, dict[str, object]]] = []

    class _CaptureSink:
        def emit(self, *, event_name: str, attributes: Mapping[str, object]) -> None:
            events.append((event_name, dict(attributes)))

    signed_url = "https://files.example.com/page/pic.png?X-Amz-Signature=deadbeef"
    handler = _RecordingHandler({signed_url: httpx.Response(403)})
    migrator = ImageMigrator(
        store=_MemoryBlobStore(),
        public_base_url=PUBLIC_BASE_URL,
        transport=httpx.MockTransport(handler),
        telemetry=TelemetryClient(enabled=True, sink=_CaptureSink()),
    )

    asyncio.run(migrator.migrate(_embed(signed_url)))

    assert events[0] == (
        "document.image.failed",
        {"source_url": "https://files.example.com/page/pic.png", "error_code": "http_403"},
    )
    assert events[-1][0] == "document.images.migrated"
    assert events[-1][1]["failed"] == 1
