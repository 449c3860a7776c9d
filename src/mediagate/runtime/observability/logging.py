"""Logging configuration for the mediagate package.

Every module logs through a stdlib logger under the "mediagate" namespace
(mediagate.ratelimit, mediagate.retry, ...). configure_logging() attaches a
single handler to that namespace. Output goes to stderr by default: stdout
carries protocol traffic when running under an MCP stdio transport.

Quick Start:
    >>> from mediagate.runtime.observability import configure_logging
    >>> configure_logging()                                  # from MEDIAGATE_LOG_* settings
    >>> configure_logging(LoggingSettings(format="json"))   # one JSON object per line
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TextIO

import orjson

from mediagate.foundation.config import get_settings

if TYPE_CHECKING:
    from mediagate.foundation.config import LoggingSettings

ROOT_LOGGER = "mediagate"

# Standard LogRecord attributes; anything else was passed via `extra=`
_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_handler: logging.Handler | None = None


class JsonFormatter(logging.Formatter):
    """Render records as single-line JSON objects via orjson.

    Fields passed through `extra=` are merged into the object.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        entry.update((k, v) for k, v in vars(record).items() if k not in _RESERVED)
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str, option=orjson.OPT_NON_STR_KEYS).decode()


TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: LoggingSettings | None = None, stream: TextIO | None = None) -> logging.Handler:
    """Install (or replace) the mediagate log handler.

    Args:
        settings: Level and format (defaults to global settings)
        stream: Output stream (default: stderr)

    Returns:
        The installed handler
    """
    global _handler
    settings = settings or get_settings().logging

    logger = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        logger.removeHandler(_handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    match settings.format:
        case "json": handler.setFormatter(JsonFormatter())
        case _: handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    logger.addHandler(handler)
    logger.setLevel(settings.level)
    logger.propagate = False
    _handler = handler
    return handler


def reset_logging() -> None:
    """Remove the installed handler and restore propagation (useful for testing)."""
    global _handler
    logger = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        logger.removeHandler(_handler)
        _handler = None
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
