from __future__ import annotations

import logging
from datetime import datetime
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen
from zoneinfo import ZoneInfo

from publisher.app.models.source_document import SourceDocument
from publisher.app.services.emoji_assets import EmojiAssetTable

LOGGER = logging.getLogger("mdx_publisher.content_assembler")

FRONT_MATTER_DELIMITER = "---"


def format_article_date(value: datetime, timezone: ZoneInfo | None = None) -> str:
    if timezone is not None and value.tzinfo is not None:
        value = value.astimezone(timezone)
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def render_front_matter(
    document: SourceDocument,
    *,
    icon: str,
    timezone: ZoneInfo | None = None,
) -> str:
    lines = [
        FRONT_MATTER_DELIMITER,
        f"title: {document.title}",
        f"public: {'true' if document.is_public else 'false'}",
        f"date: {format_article_date(document.date, timezone)}",
        f"icon: {icon}",
        f"slug: {document.slug}",
        "tags: ",
        *(f"  - {tag}" for tag in document.tags),
        f"description: {document.description}",
        FRONT_MATTER_DELIMITER,
    ]
    return "\n".join(lines)


class ContentAssembler:
    def __init__(
        self,
        *,
        emoji_assets: EmojiAssetTable,
        icon_probe_enabled: bool = True,
        probe_timeout_seconds: float = 5.0,
        user_agent: str = "mdx-publisher/0.1",
        timezone: str = "UTC",
    ) -> None:
        self._emoji_assets = emoji_assets
        self._icon_probe_enabled = icon_probe_enabled
        self._probe_timeout_seconds = max(0.5, probe_timeout_seconds)
        self._user_agent = user_agent
        self._timezone = ZoneInfo(timezone)

    def assemble(self, document: SourceDocument, transformed_body: str) -> str:
        front_matter = render_front_matter(
            document,
            icon=self.resolve_icon(document.icon),
            timezone=self._timezone,
        )
        return f"{front_matter}\n\n{transformed_body}"

    def assemble_verbatim(self, document: SourceDocument, body: str) -> str:
        """Assemble without touching the network; the icon token is kept as written."""
        front_matter = render_front_matter(document, icon=document.icon, timezone=self._timezone)
        return f"{front_matter}\n\n{body}"

    def resolve_icon(self, icon: str) -> str:
        if not self._icon_probe_enabled:
            return icon
        try:
            candidate = self._emoji_assets.asset_url(icon)
            if candidate is None:
                return icon
            if self._probe_asset(candidate):
                return candidate
        except Exception:
            LOGGER.warning("icon resolution failed; keeping token icon=%s", icon, exc_info=True)
            return icon
        LOGGER.info("icon asset unavailable; keeping token icon=%s url=%s", icon, candidate)
        return icon

    def _probe_asset(self, url: str) -> bool:
        request = Request(url, headers={"User-Agent": self._user_agent}, method="GET")
        try:
            with urlopen(request, timeout=self._probe_timeout_seconds) as response:
                status = getattr(response, "status", 200)
                return 200 <= int(status) < 300
        except HTTPError as exc:
            LOGGER.debug("icon probe rejected url=%s status=%s", url, exc.code)
            return False
        except (URLError, TimeoutError, OSError) as exc:
            LOGGER.debug("icon probe failed url=%s error=%s", url, type(exc).__name__)
            return False
