from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from publisher.app.models.source_document import SourceDocument
from publisher.app.services.content_assembler import ContentAssembler
from publisher.app.services.image_migrator import ImageMigrator
from publisher.app.services.markdown_transformer import transform_markdown
from publisher.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("mdx_publisher.document_pipeline")


@dataclass(frozen=True)
class DocumentConversionResult:
    slug: str
    content: str
    publish_path: str
    body_characters: int
    migrated_images: int
    failed_images: int
    degraded: bool


class DocumentPipelineService:
    """Runs image migration, markdown transformation and front matter assembly.

    `convert` never raises. When any step blows up, the caller still gets a
    document built from the untransformed body with `degraded=True`.
    """

    def __init__(
        self,
        *,
        image_migrator: ImageMigrator,
        content_assembler: ContentAssembler,
        publish_path_template: str = "src/content/blog/{slug}.mdx",
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._image_migrator = image_migrator
        self._content_assembler = content_assembler
        self._publish_path_template = publish_path_template
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    async def convert(self, document: SourceDocument, body: str) -> DocumentConversionResult:
        try:
            report = await self._image_migrator.migrate_with_report(body)
            transformed = transform_markdown(report.body)
            content = await asyncio.to_thread(
                self._content_assembler.assemble,
                document,
                transformed,
            )
        except Exception as exc:
            LOGGER.exception("document pipeline failed slug=%s", document.slug)
            self._telemetry.emit(
                "document.pipeline.failed",
                slug=document.slug,
                error_type=type(exc).__name__,
            )
            return DocumentConversionResult(
                slug=document.slug,
                content=self._fallback_content(document, body),
                publish_path=self.publish_path(document.slug),
                body_characters=len(body),
                migrated_images=0,
                failed_images=0,
                degraded=True,
            )

        LOGGER.info(
            "document converted slug=%s chars=%s migrated_images=%s failed_images=%s",
            document.slug,
            len(transformed),
            len(report.uploads),
            len(report.failed_urls),
        )
        self._telemetry.emit(
            "document.pipeline.converted",
            slug=document.slug,
            output_chars=len(transformed),
            migrated_images=len(report.uploads),
            failed_images=len(report.failed_urls),
        )
        return DocumentConversionResult(
            slug=document.slug,
            content=content,
            publish_path=self.publish_path(document.slug),
            body_characters=len(transformed),
            migrated_images=len(report.uploads),
            failed_images=len(report.failed_urls),
            degraded=False,
        )

    def publish_path(self, slug: str) -> str:
        return self._publish_path_template.replace("{slug}", slug)

    def _fallback_content(self, document: SourceDocument, body: str) -> str:
        try:
            return self._content_assembler.assemble_verbatim(document, body)
        except Exception:
            LOGGER.exception(
                "front matter rendering failed; returning bare body slug=%s",
                document.slug,
            )
            return body
