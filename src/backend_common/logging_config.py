"""Structured key=value logging configuration (structlog on top of stdlib logging)."""
from __future__ import annotations

import logging
import sys

import structlog

# Fields rendered first so that delivery lines line up in Loki/Grafana.
_KEY_ORDER = [
    "timestamp",
    "level",
    "logger",
    "event",
    "service",
    "trace_id",
    "request_id",
    "webhook_id",
    "event_id",
    "attempt",
]


def _sanitize_string(value: str) -> str:
    """Escape control characters so the log entry stays on a single line."""
    return (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def replace_newlines_processor(logger, method_name, event_dict):
    """Escape newlines in string values (including formatted tracebacks)."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _sanitize_string(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = [
                _sanitize_string(item) if isinstance(item, str) else item
                for item in value
            ]
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _sanitize_string(v) if isinstance(v, str) else v
                for k, v in value.items()
            }
    return event_dict


class SingleLineFormatter(logging.Formatter):
    """Formatter that ensures output is always on a single line."""

    def format(self, record):
        message = super().format(record)
        return message.replace("\n", "\\n").replace("\r", "\\r")


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog for single-line key=value output.

    Standard library loggers (aiohttp access log, asyncpg, redis) are routed
    through the same root handler so every line has the same shape.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    aiohttp_logger = logging.getLogger("aiohttp.access")
    aiohttp_logger.setLevel(logging.INFO)
    aiohttp_logger.propagate = True
    aiohttp_logger.handlers = []

    # Outbound webhook calls are logged by the delivery executor itself.
    logging.getLogger("aiohttp.client").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            # Must run after format_exc_info so tracebacks are escaped too
            replace_newlines_processor,
            structlog.processors.KeyValueRenderer(
                key_order=_KEY_ORDER,
                drop_missing=True,
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
