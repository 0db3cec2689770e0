from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, cast


@dataclass(frozen=True)
class SourceDocument:
    title: str
    slug: str
    description: str
    icon: str
    tags: tuple[str, ...]
    date: datetime
    is_public: bool


def parse_notion_page(page: Mapping[str, Any]) -> SourceDocument:
    """Build a SourceDocument from a Notion page object.

    Expects the blog database layout: `title` (title), `slug`, `description` and
    `icon` (rich text), `tags` (multi-select), `public` (checkbox) and `date`
    (last edited time).
    """
    properties = _mapping(page.get("properties"), "properties")
    return SourceDocument(
        title=_first_plain_text(properties, "title", "title"),
        slug=_first_plain_text(properties, "slug", "rich_text"),
        description=_first_plain_text(properties, "description", "rich_text"),
        icon=_first_plain_text(properties, "icon", "rich_text"),
        tags=_multi_select_names(properties, "tags"),
        date=_last_edited_time(properties, "date"),
        is_public=_checkbox(properties, "public"),
    )


def _mapping(value: object, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"Notion page is missing `{name}`")
    return cast(Mapping[str, Any], value)


def _property(properties: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    return _mapping(properties.get(name), f"properties.{name}")


def _first_plain_text(properties: Mapping[str, Any], name: str, kind: str) -> str:
    items = _property(properties, name).get(kind)
    if not isinstance(items, list) or not items:
        raise ValueError(f"Notion property `{name}` has no {kind} content")
    first = _mapping(items[0], f"properties.{name}.{kind}[0]")
    plain_text = first.get("plain_text")
    if not isinstance(plain_text, str):
        raise ValueError(f"Notion property `{name}` has no plain_text")
    return plain_text


def _multi_select_names(properties: Mapping[str, Any], name: str) -> tuple[str, ...]:
    options = _property(properties, name).get("multi_select")
    if not isinstance(options, list):
        raise ValueError(f"Notion property `{name}` is not a multi_select")
    names: list[str] = []
    for option in options:
        option_name = _mapping(option, f"properties.{name}.multi_select[]").get("name")
        if isinstance(option_name, str):
            names.append(option_name)
    return tuple(names)


def _last_edited_time(properties: Mapping[str, Any], name: str) -> datetime:
    raw = _property(properties, name).get("last_edited_time")
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"Notion property `{name}` has no last_edited_time")
    try:
        return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Notion property `{name}` is not an ISO timestamp: {raw}") from exc


def _checkbox(properties: Mapping[str, Any], name: str) -> bool:
    value = _property(properties, name).get("checkbox")
    if not isinstance(value, bool):
        raise ValueError(f"Notion property `{name}` is not a checkbox")
    return value
