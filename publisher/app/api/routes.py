from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from structlog.contextvars import bind_contextvars, reset_contextvars

from publisher.app.dependencies import get_document_pipeline_service
from publisher.app.models.document_contracts import (
    ConvertDocumentRequest,
    ConvertDocumentResponse,
    ConvertNotionPageRequest,
)
from publisher.app.models.source_document import SourceDocument, parse_notion_page
from publisher.app.services.document_pipeline_service import DocumentPipelineService

router = APIRouter()


@router.post(
    "/documents/convert",
    response_model=ConvertDocumentResponse,
    tags=["documents"],
    operation_id="documents_convert",
)
async def convert_document(
    request: ConvertDocumentRequest,
    pipeline: Annotated[DocumentPipelineService, Depends(get_document_pipeline_service)],
) -> ConvertDocumentResponse:
    return await _convert(request.document.to_source_document(), request.body, pipeline)


@router.post(
    "/documents/convert/notion",
    response_model=ConvertDocumentResponse,
    tags=["documents"],
    operation_id="documents_convert_notion",
)
async def convert_notion_page(
    request: ConvertNotionPageRequest,
    pipeline: Annotated[DocumentPipelineService, Depends(get_document_pipeline_service)],
) -> ConvertDocumentResponse:
    try:
        document = parse_notion_page(request.page)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return await _convert(document, request.body, pipeline)


async def _convert(
    document: SourceDocument,
    body: str,
    pipeline: DocumentPipelineService,
) -> ConvertDocumentResponse:
    context_tokens = bind_contextvars(document_slug=document.slug)
    try:
        result = await pipeline.convert(document, body)
    finally:
        reset_contextvars(**context_tokens)
    return ConvertDocumentResponse(
        slug=result.slug,
        content=result.content,
        publish_path=result.publish_path,
        body_characters=result.body_characters,
        migrated_images=result.migrated_images,
        failed_images=result.failed_images,
        degraded=result.degraded,
    )
