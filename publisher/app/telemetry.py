from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol
from urllib.parse import urlsplit, urlunsplit

import structlog

from publisher.app.logging_config import TELEMETRY_LOGGER_NAME

TelemetryValue = bool | int | float | str | None

# Markdown in and MDX out; only their sizes are reported.
_DOCUMENT_TEXT_ATTRIBUTES: frozenset[str] = frozenset(
    {"body", "content", "front_matter", "markdown"}
)
_CREDENTIAL_SUFFIXES: tuple[str, ...] = ("access_key", "access_key_id", "authorization", "secret")
_MAX_STRING_LENGTH = 160
REDACTED = "[redacted]"


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        return None


class StructuredLogTelemetrySink:
    """One `telemetry` record per event on the dedicated telemetry logger."""

    def __init__(self, logger_name: str = TELEMETRY_LOGGER_NAME) -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **attributes)


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(
            event_name=event_name,
            attributes={
                key: sanitize_attribute(key, value)
                for key, value in attributes.items()
            },
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())


def sanitize_attribute(key: str, value: Any) -> TelemetryValue:
    """
    Reduce one event attribute to something safe to write to the telemetry log.

    Document text and credentials are replaced by a marker. URL attributes
    (`source_url`, `public_url`, ...) lose their query string and fragment, since
    exported image links carry signed download tokens there. Other values are
    kept if scalar, otherwise reduced to their type name.
    """
    if key in _DOCUMENT_TEXT_ATTRIBUTES or key.endswith(_CREDENTIAL_SUFFIXES):
        return REDACTED
    if value is None or isinstance(value, bool | int | float):
        return value
    if not isinstance(value, str):
        return type(value).__name__
    if key == "url" or key.endswith("_url"):
        value = _strip_url_secrets(value)
    if len(value) > _MAX_STRING_LENGTH:
        return f"{value[:_MAX_STRING_LENGTH]}..."
    return value


def _strip_url_secrets(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
