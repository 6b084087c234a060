"""Logging setup with per-request and per-run context fields."""

import logging
import sys
import json
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
from pathlib import Path
from contextvars import ContextVar


DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}

_log_context: ContextVar[Dict[str, Any]] = ContextVar("nodeflow_log_context", default={})


class StructuredFormatter(logging.Formatter):
    """One JSON document per record, context fields merged in at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.utcfromtimestamp(record.created).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(getattr(record, "extra_fields", {}))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


class LogContextFilter(logging.Filter):
    """Copies the current request/run context onto each record as `extra_fields`."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = dict(_log_context.get())
        fields.update(getattr(record, "extra_fields", {}))
        record.extra_fields = fields
        return True


def _attach(root_logger: logging.Logger, handler: logging.Handler, formatter: logging.Formatter):
    handler.setFormatter(formatter)
    handler.addFilter(LogContextFilter())
    root_logger.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure the root logger for the service and the CLI.

    Existing root handlers are replaced, so calling this again reconfigures
    rather than duplicates output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path; the file is rotated at `max_size`
        log_format: Format string for plain-text output
        structured: Emit JSON records instead of plain text
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep

    Returns:
        Root logger instance
    """
    level_value = getattr(logging, level.upper())
    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=log_format or DEFAULT_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    _attach(root_logger, logging.StreamHandler(sys.stdout), formatter)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        _attach(root_logger, RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count), formatter)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(quiet_level, level_value))
    logging.getLogger("nodeflow").setLevel(level_value)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_logging_context(**fields):
    """Add fields to every record logged from the current request or thread."""
    _log_context.set({**_log_context.get(), **fields})


def remove_logging_context(*keys: str):
    _log_context.set({key: value for key, value in _log_context.get().items() if key not in keys})


def clear_logging_context():
    _log_context.set({})


def log_with_context(logger: logging.Logger, level: int, message: str, **fields):
    """Log `message` with one-off structured fields."""
    logger.log(level, message, extra={"extra_fields": fields})
