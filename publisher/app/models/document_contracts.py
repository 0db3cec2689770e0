from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from publisher.app.models.source_document import SourceDocument

_SLUG_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]*")


class SourceDocumentPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str = Field(max_length=500)
    slug: str = Field(max_length=200)
    description: str = Field(default="", max_length=2000)
    icon: str = Field(default="", max_length=200)
    tags: list[str] = Field(default_factory=list)
    date: datetime
    is_public: bool = Field(default=False, alias="isPublic")

    @field_validator("slug")
    @classmethod
    def _validate_slug(cls, value: str) -> str:
        normalized = value.strip()
        if not _SLUG_PATTERN.fullmatch(normalized):
            raise ValueError("slug may only contain letters, digits, '-' and '_'")
        return normalized

    def to_source_document(self) -> SourceDocument:
        return SourceDocument(
            title=self.title,
            slug=self.slug,
            description=self.description,
            icon=self.icon,
            tags=tuple(self.tags),
            date=self.date,
            is_public=self.is_public,
        )


class ConvertDocumentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    document: SourceDocumentPayload
    body: str = Field(max_length=2_000_000)


class ConvertNotionPageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page: dict[str, Any]
    body: str = Field(max_length=2_000_000)


class ConvertDocumentResponse(BaseModel):
    slug: str
    content: str
    publish_path: str
    body_characters: int
    migrated_images: int
    failed_images: int
    degraded: bool
