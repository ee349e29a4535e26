"""
Structured logging for CloudOnboard.

Every log record is emitted as a single JSON object. Records produced while
a saga is running carry the saga's correlation id, so the sequence of
control plane, CloudFormation and task chain steps for one add/remove
request can be pulled out of an interleaved log stream.

Log Format:
    {
        "timestamp": "2026-03-02T09:14:00.123456+00:00",
        "level": "INFO",
        "logger": "cloudonboard.stack_reconciler",
        "correlation_id": "7c0e...",
        "message": "Updating CloudFormation stack",
        "stack_name": "RubrikPolarisStack",
        ...additional context...
    }

Usage:
    from cloudonboard.logging_config import get_logger, log_with_context

    logger = get_logger(__name__)
    log_with_context(logger, "info", "Starting add saga", native_id="123456789012")
"""

import json
import logging
import sys
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from datetime import UTC, datetime
from types import TracebackType
from typing import TextIO

from typing_extensions import override

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# LogRecord attributes that are not user supplied context.
_STANDARD_ATTRS = frozenset(
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
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class StructuredFormatter(logging.Formatter):
    """
    Formatter that renders log records as JSON objects.

    Standard Fields:
        - timestamp: ISO 8601 timestamp in UTC
        - level: Log level name
        - logger: Logger name
        - correlation_id: Saga correlation id, or null outside a saga
        - message: Human-readable log message
        - exc_info: Formatted traceback if present

    Extra fields passed through ``log_with_context`` become top-level keys.
    Values that are not JSON serializable (UUIDs, enums) are rendered with
    ``str``.
    """

    @override
    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": _correlation_id.get(),
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(log_level: str = "INFO", stream: TextIO | None = None) -> None:
    """
    Configure structured logging for CloudOnboard.

    Replaces any handlers on the root logger with a single JSON handler.
    Call once at process start; library users that manage logging
    themselves can skip it.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream (default: stderr, so stdout stays free for
            CLI output)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)

    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get logger for a module."""
    return logging.getLogger(name)


def generate_correlation_id() -> str:
    """Generate a new saga correlation id."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation id for the current context."""
    _ = _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get the correlation id of the current context, if any."""
    return _correlation_id.get()


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """
    Log message with additional structured context.

    Args:
        logger: Logger instance
        level: Log level (debug, info, warning, error, critical)
        message: Human-readable log message
        **context: Additional context fields as keyword arguments

    Example:
        >>> log_with_context(
        ...     logger,
        ...     "info",
        ...     "Finalized feature protection",
        ...     native_id="123456789012",
        ...     feature="CLOUD_NATIVE_PROTECTION",
        ... )
    """
    log_func: Callable[..., None] = getattr(logger, level.lower())
    log_func(message, extra=dict(context))


class LogContext:
    """
    Context manager that scopes a correlation id to one saga.

    Nested contexts restore the outer id on exit, so an outpost sub-saga
    started inside an add saga logs under its own id and hands the outer
    id back afterwards.

    Example:
        >>> with LogContext() as correlation_id:
        ...     orchestrator.add_features(account, [CLOUD_NATIVE_PROTECTION])
    """

    def __init__(self, correlation_id: str | None = None) -> None:
        self.correlation_id: str = correlation_id or generate_correlation_id()
        self._previous: str | None = None

    def __enter__(self) -> str:
        self._previous = _correlation_id.get()
        set_correlation_id(self.correlation_id)
        return self.correlation_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        set_correlation_id(self._previous)
