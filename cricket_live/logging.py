"""
Structured logging for the scoring service.

Provides a JSON formatter for production, a plain console formatter for
development and a logger factory so every module logs the same way.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional

# LogRecord attributes that are not user supplied `extra=` fields
_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:
    - timestamp, level, logger, message
    - exception (if any)
    - extra: whatever was passed via `extra=` (match_id, innings_id, ...)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = _extra_fields(record)
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human readable single-line output for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        base_msg = f"[{record.levelname}] {record.name}: {record.getMessage()}"

        extra = _extra_fields(record)
        if extra:
            base_msg += " | " + " ".join(f"{k}={v}" for k, v in extra.items())

        if record.exc_info:
            base_msg += "\n" + self.formatException(record.exc_info)

        return base_msg


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    handler: Optional[logging.Handler] = None,
) -> None:
    """
    Configure root logging once at startup.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_output: JSON lines when True, console lines otherwise
        handler: optional handler (tests pass their own); defaults to stdout
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)

    handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from third-party loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
