from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType

from publisher.app.config import DEFAULT_EMOJI_ASSET_URL_TEMPLATE

EMOJI_TABLE_PATH = Path(__file__).with_name("emoji_names.json")


@dataclass(frozen=True)
class EmojiAssetTable:
    """Read-only lookup from symbolic emoji names to asset URLs."""

    codepoints: Mapping[str, str]
    url_template: str = DEFAULT_EMOJI_ASSET_URL_TEMPLATE

    def asset_url(self, icon: str) -> str | None:
        name = normalize_emoji_name(icon)
        if name is None:
            return None
        codepoint = self.codepoints.get(name)
        if codepoint is None:
            return None
        return self.url_template.format(codepoint=codepoint)

    def __contains__(self, icon: object) -> bool:
        return isinstance(icon, str) and self.asset_url(icon) is not None

    def __len__(self) -> int:
        return len(self.codepoints)


def normalize_emoji_name(icon: str) -> str | None:
    normalized = icon.strip().strip(":").strip().lower()
    if not normalized:
        return None
    return normalized


def load_emoji_asset_table(
    url_template: str = DEFAULT_EMOJI_ASSET_URL_TEMPLATE,
    *,
    table_path: Path = EMOJI_TABLE_PATH,
) -> EmojiAssetTable:
    parsed = json.loads(table_path.read_text(encoding="utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError(f"{table_path.name} must contain a JSON object")
    codepoints = {
        str(name).strip().lower(): str(codepoint).strip().lower()
        for name, codepoint in parsed.items()
        if str(name).strip() and str(codepoint).strip()
    }
    return EmojiAssetTable(codepoints=MappingProxyType(codepoints), url_template=url_template)
