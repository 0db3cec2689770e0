from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from publisher.app.config import AppSettings

LOG_FILE_NAME = "mdx-publisher.log"
TELEMETRY_LOG_FILE_NAME = "mdx-publisher-telemetry.log"
ROOT_LOGGER_NAME = "mdx_publisher"
TELEMETRY_LOGGER_NAME = "mdx_publisher.telemetry"


def configure_application_logging(settings: AppSettings) -> Path:
    """
    Route `mdx_publisher.*` loggers to the console and a JSON log file.

    Telemetry events go to their own file and never reach the application log.
    Every file record carries the document being converted (`document_slug`) and
    the request it belongs to (`request_id`), or null outside a conversion.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME

    structlog.configure(
        processors=[
            *_context_chain(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_level = _resolve_log_level(settings.log_level)
    _install_handlers(
        ROOT_LOGGER_NAME,
        level=logging.DEBUG,
        handlers=[_console_handler(console_level), _file_handler(log_file, logging.DEBUG)],
    )
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        level=logging.INFO,
        handlers=[_file_handler(telemetry_log_file, logging.INFO)],
    )

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        logging.getLevelName(console_level),
        log_file,
        telemetry_log_file,
    )
    return log_file


def _resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _context_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _install_handlers(
    logger_name: str,
    *,
    level: int,
    handlers: list[logging.Handler],
) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in handlers:
        logger.addHandler(handler)


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_context_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=_stream_supports_color(sys.stdout)),
            ],
        )
    )
    return handler


def _file_handler(path: Path, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_context_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _add_document_context,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _add_document_context(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    request_id = event_dict.pop("http_request_id", None)
    event_dict.setdefault("request_id", request_id)
    event_dict.setdefault("document_slug", None)
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except (OSError, RuntimeError, ValueError):
        return False
