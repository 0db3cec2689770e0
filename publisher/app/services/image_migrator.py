from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from time import time
from urllib.parse import urlparse
from uuid import uuid4

import httpx

from publisher.app.repositories.blob_store import BlobStore, BlobStoreWriteError
from publisher.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("mdx_publisher.image_migrator")

DEFAULT_IMAGE_CONTENT_TYPE = "image/png"
STORAGE_KEY_PREFIX = "images"

# Notion exports embed images as ![<url>](<url>); only that shape is migrated.
_EMBED_PATTERN = re.compile(r"!\[(https://[^\]\s]+)\]\(\1\)")


@dataclass(frozen=True)
class UploadOutcome:
    source_url: str
    public_url: str


@dataclass(frozen=True)
class ImageMigrationReport:
    body: str
    uploads: tuple[UploadOutcome, ...]
    failed_urls: tuple[str, ...]


@dataclass(frozen=True)
class _ImageTaskResult:
    source_url: str
    outcome: UploadOutcome | None
    error_code: str | None


class ImageFetchError(Exception):
    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def extract_image_urls(body: str) -> list[str]:
    """Return the distinct embed URLs in first-seen order."""
    seen: dict[str, None] = {}
    for match in _EMBED_PATTERN.finditer(body):
        seen.setdefault(match.group(1), None)
    return list(seen)


def image_file_name(source_url: str) -> str:
    segment = urlparse(source_url).path.rsplit("/", 1)[-1].strip()
    if segment:
        return segment
    return f"image-{int(time() * 1000)}.png"


def build_storage_key(source_url: str) -> str:
    return f"{STORAGE_KEY_PREFIX}/{image_file_name(source_url)}-{uuid4()}.png"


def rewrite_image_embeds(body: str, rewrite_map: dict[str, str]) -> str:
    rewritten = body
    for source_url, public_url in rewrite_map.items():
        rewritten = rewritten.replace(
            f"![{source_url}]({source_url})",
            f"![{public_url}]({public_url})",
        )
    return rewritten


class ImageMigrator:
    """Copies remote embedded images into a blob store and points the body at the copies.

    Each distinct source URL is fetched and stored by its own task; all tasks are
    awaited together and a failing task only leaves its own embeds untouched.
    """

    def __init__(
        self,
        *,
        store: BlobStore,
        public_base_url: str,
        fetch_timeout_seconds: float = 30.0,
        user_agent: str = "mdx-publisher/0.1",
        transport: httpx.AsyncBaseTransport | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._store = store
        self._public_base_url = public_base_url.rstrip("/")
        self._fetch_timeout_seconds = max(1.0, fetch_timeout_seconds)
        self._user_agent = user_agent.strip() or "mdx-publisher/0.1"
        self._transport = transport
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    async def migrate(self, body: str) -> str:
        report = await self.migrate_with_report(body)
        return report.body

    async def migrate_with_report(self, body: str) -> ImageMigrationReport:
        try:
            source_urls = extract_image_urls(body)
            if not source_urls:
                return ImageMigrationReport(body=body, uploads=(), failed_urls=())

            results = await self._migrate_all(source_urls)
            uploads = tuple(result.outcome for result in results if result.outcome is not None)
            failed_urls = tuple(result.source_url for result in results if result.outcome is None)
            rewrite_map = {outcome.source_url: outcome.public_url for outcome in uploads}
            rewritten = rewrite_image_embeds(body, rewrite_map)
        except Exception:
            LOGGER.exception("image migration failed; returning body unchanged")
            return ImageMigrationReport(body=body, uploads=(), failed_urls=())

        LOGGER.info(
            "image migration finished distinct=%s uploaded=%s failed=%s",
            len(source_urls),
            len(uploads),
            len(failed_urls),
        )
        self._telemetry.emit(
            "document.images.migrated",
            distinct=len(source_urls),
            uploaded=len(uploads),
            failed=len(failed_urls),
        )
        return ImageMigrationReport(body=rewritten, uploads=uploads, failed_urls=failed_urls)

    async def _migrate_all(self, source_urls: list[str]) -> list[_ImageTaskResult]:
        async with httpx.AsyncClient(
            timeout=self._fetch_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": self._user_agent},
            transport=self._transport,
        ) as client:
            settled = await asyncio.gather(
                *(self._migrate_one(client, source_url) for source_url in source_urls),
                return_exceptions=True,
            )

        results: list[_ImageTaskResult] = []
        for source_url, item in zip(source_urls, settled, strict=True):
            if isinstance(item, BaseException):
                if not isinstance(item, Exception):
                    raise item
                LOGGER.warning(
                    "image task crashed url=%s error=%s",
                    source_url,
                    type(item).__name__,
                )
                results.append(
                    _ImageTaskResult(
                        source_url=source_url,
                        outcome=None,
                        error_code=f"unexpected_error:{type(item).__name__}",
                    )
                )
                continue
            results.append(item)
        return results

    async def _migrate_one(self, client: httpx.AsyncClient, source_url: str) -> _ImageTaskResult:
        key = build_storage_key(source_url)
        try:
            data, content_type = await self._fetch_image(client, source_url)
            await asyncio.to_thread(self._store.put, key, data, content_type)
        except ImageFetchError as exc:
            return self._failed(source_url, f"http_{exc.status_code}", exc)
        except httpx.HTTPError as exc:
            return self._failed(source_url, f"network_error:{type(exc).__name__}", exc)
        except BlobStoreWriteError as exc:
            return self._failed(source_url, "store_write_error", exc)

        public_url = f"{self._public_base_url}/{key}"
        LOGGER.info("image migrated source=%s public_url=%s", source_url, public_url)
        return _ImageTaskResult(
            source_url=source_url,
            outcome=UploadOutcome(source_url=source_url, public_url=public_url),
            error_code=None,
        )

    async def _fetch_image(
        self,
        client: httpx.AsyncClient,
        source_url: str,
    ) -> tuple[bytes, str]:
        response = await client.get(source_url)
        if not response.is_success:
            raise ImageFetchError(
                f"image download failed status={response.status_code}",
                status_code=response.status_code,
            )
        content_type = response.headers.get("content-type") or DEFAULT_IMAGE_CONTENT_TYPE
        return response.content, content_type

    def _failed(self, source_url: str, error_code: str, exc: Exception) -> _ImageTaskResult:
        LOGGER.warning(
            "image migration skipped url=%s error_code=%s error=%s",
            source_url,
            error_code,
            exc,
        )
        self._telemetry.emit(
            "document.image.failed",
            source_url=source_url,
            error_code=error_code,
        )
        return _ImageTaskResult(source_url=source_url, outcome=None, error_code=error_code)


async def migrate_images(
    body: str,
    store: BlobStore,
    public_base_url: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    migrator = ImageMigrator(store=store, public_base_url=public_base_url, transport=transport)
    return await migrator.migrate(body)
