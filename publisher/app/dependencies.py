from __future__ import annotations

from functools import lru_cache

from publisher.app.config import AppSettings, load_settings
from publisher.app.repositories.blob_store import BlobStore, build_blob_store
from publisher.app.services.content_assembler import ContentAssembler
from publisher.app.services.document_pipeline_service import DocumentPipelineService
from publisher.app.services.emoji_assets import EmojiAssetTable, load_emoji_asset_table
from publisher.app.services.image_migrator import ImageMigrator
from publisher.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_emoji_asset_table() -> EmojiAssetTable:
    return load_emoji_asset_table(get_settings().emoji_asset_url_template)


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    return build_blob_store(get_settings())


@lru_cache(maxsize=1)
def get_document_pipeline_service() -> DocumentPipelineService:
    settings = get_settings()
    telemetry = get_telemetry()
    return DocumentPipelineService(
        image_migrator=ImageMigrator(
            store=get_blob_store(),
            public_base_url=settings.public_base_url,
            fetch_timeout_seconds=settings.image_fetch_timeout_seconds,
            user_agent=settings.image_fetch_user_agent,
            telemetry=telemetry,
        ),
        content_assembler=ContentAssembler(
            emoji_assets=get_emoji_asset_table(),
            icon_probe_enabled=settings.icon_probe_enabled,
            probe_timeout_seconds=settings.icon_probe_timeout_seconds,
            user_agent=settings.image_fetch_user_agent,
            timezone=settings.article_timezone,
        ),
        publish_path_template=settings.publish_path_template,
        telemetry=telemetry,
    )


def reset_cached_dependencies() -> None:
    get_document_pipeline_service.cache_clear()
    get_blob_store.cache_clear()
    get_emoji_asset_table.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
