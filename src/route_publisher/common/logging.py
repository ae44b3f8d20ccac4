"""Structured logging for the publisher, built on structlog.

Every component logs through :func:`get_logger`. Event dictionaries pass
through :func:`redact_credentials` before rendering, so API tokens for the
tunnel provider or the identity provider never reach a log sink, even when a
caller binds a whole settings payload as context.

Defaults come from ``ROUTE_PUBLISHER_LOG_LEVEL``, ``ROUTE_PUBLISHER_LOG_JSON``
and ``ROUTE_PUBLISHER_LOG_FILE`` when the arguments are omitted.
"""

import logging
import os
import sys

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from .utils import sanitize_log_data

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def redact_credentials(
    _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
    """structlog processor masking token-like keys, including nested dicts."""
    return sanitize_log_data(event_dict)


def _processors(json_format: bool) -> list[Processor]:
    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        redact_credentials,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def setup_logging(
    level: str | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Route stdlib and structlog output to stdout, and optionally a file.

    Args:
        level: Level name; defaults to ``ROUTE_PUBLISHER_LOG_LEVEL`` or INFO
        json_format: Render JSON lines instead of console output
        log_file: Extra file sink
    """
    level_name = (level or os.environ.get("ROUTE_PUBLISHER_LOG_LEVEL") or "INFO").upper()
    log_level = getattr(logging, level_name)
    if json_format is None:
        json_format = os.environ.get("ROUTE_PUBLISHER_LOG_JSON", "").lower() in ("1", "true")
    log_file = log_file or os.environ.get("ROUTE_PUBLISHER_LOG_FILE") or None

    handlers = [_handler(logging.StreamHandler(sys.stdout), log_level, "%(message)s")]
    if log_file:
        handlers.append(_handler(logging.FileHandler(log_file), log_level, FILE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(log_level)

    structlog.configure(
        processors=_processors(json_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]
