"""Logging setup for the workflow guard.

Console output goes to stderr so that command line results on stdout stay
machine readable. Request-scoped fields (user, session, workflow) are bound
with ``logging_context`` and attached to every record emitted inside it.
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s%(context_suffix)s"

# Loggers from dependencies that are too chatty below WARNING
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.orm")

_context: ContextVar[Dict[str, Any]] = ContextVar("workflow_guard_log_context", default={})


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with bound context under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        fields = getattr(record, "context_fields", None)
        if fields:
            entry["context"] = fields

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(entry, default=str)


class ContextFilter(logging.Filter):
    """Merges bound context and per-call fields into ``record.context_fields``."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = dict(_context.get())
        fields.update(getattr(record, "extra_fields", None) or {})
        record.context_fields = fields
        record.context_suffix = (
            " [" + ", ".join(f"{key}={value}" for key, value in fields.items()) + "]" if fields else ""
        )
        return True


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure root logging for the workflow guard.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path; rotated once it reaches ``max_size``
        log_format: Format string for plain text output
        structured: Emit JSON lines instead of plain text
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    context_filter = ContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


@contextmanager
def logging_context(**fields) -> Iterator[Dict[str, Any]]:
    """Bind fields to every record logged inside the block; None values are skipped."""
    bound = dict(_context.get())
    bound.update({key: value for key, value in fields.items() if value is not None})
    token = _context.set(bound)
    try:
        yield bound
    finally:
        _context.reset(token)


def current_logging_context() -> Dict[str, Any]:
    return dict(_context.get())


def log_with_context(logger: logging.Logger, level: int, message: str, **fields):
    """Log a message with additional one-off context fields."""
    logger.log(level, message, extra={"extra_fields": fields})
