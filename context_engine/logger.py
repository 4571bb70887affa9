"""Logging helpers: root configuration, JSON output and correlation ids."""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

DEFAULT_LOGGER_NAME = "context_engine"
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"

_correlation_id: ContextVar[str] = ContextVar("context_engine_correlation_id", default="-")

# LogRecord attributes that are not user supplied ``extra`` fields.
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "taskName",
        "message",
        "asctime",
        "correlation_id",
    }
)


def get_correlation_id() -> str:
    """Return the correlation id bound to the current context ("-" when unset)."""
    return _correlation_id.get()


def set_correlation_id(value: str | None) -> None:
    """Bind ``value`` as the correlation id; ``None`` resets it."""
    _correlation_id.set(value or "-")


class CorrelationIdFilter(logging.Filter):
    """Attach the current correlation id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


class StructuredFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", get_correlation_id()),
        }

        if record.exc_info:
            payload["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value

        return json.dumps(payload, default=str)


def configure_logging(level: str | int = "INFO", *, structured: bool = False) -> None:
    """Configure the root logger with a single stream handler."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(CorrelationIdFilter())
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(_DEFAULT_FORMAT))

    root.addHandler(handler)
    root.setLevel(level)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a named logger, defaulting to the package logger."""
    return logging.getLogger(name or DEFAULT_LOGGER_NAME)


__all__ = [
    "CorrelationIdFilter",
    "StructuredFormatter",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
    "set_correlation_id",
]
