"""Rewrites Zenn-flavoured markdown into MDX.

Three passes run in a fixed order: callouts first, then link previews, then
code block titles. Callout conversion emits container tags and indented content
that the later line-based passes must see in their final form.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import overload

CALLOUT_OPEN_TOKEN = ":::message"
CALLOUT_CLOSE_TOKEN = ":::"
CALLOUT_INDENT = "  "
DEFAULT_CALLOUT_CATEGORY = "info"
CALLOUT_CATEGORY_ALIASES: dict[str, str] = {"alert": "warning"}

_CALLOUT_OPEN_PATTERN = re.compile(rf"^{re.escape(CALLOUT_OPEN_TOKEN)}(?:[ \t]+([a-z]+))?[ \t]*$")
_MARKDOWN_LINK_PATTERN = re.compile(r"\[[^\]]+\]\([^)]+\)")
_BARE_URL_PATTERN = re.compile(r"(https?://\S+?)([.,;:!?)\"'>}\]]*)")
_CODE_TITLE_PATTERN = re.compile(r"^```([A-Za-z0-9_+\-]+):(\S+).*$")


@dataclass(frozen=True)
class _Outside:
    pass


@dataclass
class _InsideBlock:
    category: str
    open_line: str
    lines: list[str] = field(default_factory=list)


def convert_callouts(text: str) -> str:
    state: _Outside | _InsideBlock = _Outside()
    output: list[str] = []
    for line in text.split("\n"):
        if isinstance(state, _Outside):
            open_match = _CALLOUT_OPEN_PATTERN.match(line)
            if open_match is None:
                output.append(line)
                continue
            state = _InsideBlock(
                category=_callout_category(open_match.group(1)),
                open_line=line,
            )
            continue

        if line.rstrip() == CALLOUT_CLOSE_TOKEN:
            output.extend(_render_callout(state.category, state.lines))
            state = _Outside()
            continue
        state.lines.append(line)

    if isinstance(state, _InsideBlock):
        # Unterminated block: leave it exactly as written.
        output.append(state.open_line)
        output.extend(state.lines)
    return "\n".join(output)


def _callout_category(kind: str | None) -> str:
    if not kind:
        return DEFAULT_CALLOUT_CATEGORY
    return CALLOUT_CATEGORY_ALIASES.get(kind, kind)


def _render_callout(category: str, content_lines: list[str]) -> list[str]:
    trimmed = _trim_blank_lines(content_lines)
    if not trimmed:
        trimmed = [""]
    rendered = [f'<Callout type="{category}" title="">']
    rendered.extend(f"{CALLOUT_INDENT}{line}" for line in trimmed)
    rendered.append("</Callout>")
    # Container is followed by its own newline.
    rendered.append("")
    return rendered


def _trim_blank_lines(lines: list[str]) -> list[str]:
    start = 0
    end = len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


@overload
def convert_link_previews(text: str) -> str: ...


@overload
def convert_link_previews(text: None) -> None: ...


def convert_link_previews(text: str | None) -> str | None:
    if text is None:
        return text
    return "\n".join(_link_preview_line(line) for line in text.split("\n"))


def _link_preview_line(line: str) -> str:
    if _MARKDOWN_LINK_PATTERN.search(line):
        return line
    match = _BARE_URL_PATTERN.fullmatch(line.strip())
    if match is None:
        return line
    # JSX attribute strings end at the first double quote.
    url = match.group(1).replace('"', "&quot;")
    return f'<LinkPreview url="{url}" />'


def convert_code_titles(text: str) -> str:
    return "\n".join(_code_title_line(line) for line in text.split("\n"))


def _code_title_line(line: str) -> str:
    match = _CODE_TITLE_PATTERN.match(line)
    if match is None:
        return line
    language, file_name = match.groups()
    return f'```{language} title="{file_name}"'


def transform_markdown(text: str) -> str:
    return convert_code_titles(convert_link_previews(convert_callouts(text)))
