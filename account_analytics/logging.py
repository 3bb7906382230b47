"""Structured logging configuration for account-analytics.

Records logged while an update is in flight carry the account id and
idempotency key of the event being applied, set with ``event_context``.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

_event_fields: ContextVar[dict[str, str]] = ContextVar("event_fields", default={})


@contextmanager
def event_context(**fields: str) -> Iterator[None]:
    """Attach ``fields`` to every record logged inside the block on this thread."""
    token = _event_fields.set({**_event_fields.get(), **fields})
    try:
        yield
    finally:
        _event_fields.reset(token)


def current_event_context() -> dict[str, str]:
    """Fields set by the innermost ``event_context`` on this thread."""
    return dict(_event_fields.get())


class EventContextFilter(logging.Filter):
    """Copy the current event fields onto each record.

    Sets ``record.event_fields`` for ``JsonFormatter`` and a rendered
    ``record.event_tag`` (``-`` outside any event) for the text format.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _event_fields.get()
        record.event_fields = dict(fields)
        record.event_tag = " ".join(f"{k}={v}" for k, v in fields.items()) or "-"
        return True


def setup_logging(
    level: str = "INFO",
    format_type: str = "standard",
) -> None:
    """Configure logging for account-analytics.

    Parameters
    ----------
    level : str
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    format_type : str
        Format type: "standard" or "json".
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(event_tag)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(EventContextFilter())
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger("account_analytics").setLevel(log_level)

    # Reduce noise from external libraries
    logging.getLogger("confluent_kafka").setLevel(logging.WARNING)
    logging.getLogger("psycopg").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        log_data.update(getattr(record, "event_fields", {}))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Callers pass extra={"extra": {...}} to attach structured fields
        if hasattr(record, "extra"):
            log_data.update(record.extra)

        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Parameters
    ----------
    name : str
        Logger name (usually __name__).

    Returns
    -------
    logging.Logger
        Configured logger.
    """
    return logging.getLogger(name)
