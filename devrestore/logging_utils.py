"""Structured logging utilities for the restore tool."""
from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from .config import LOG_TIME_FORMAT

_EXTRA_PREFIX = "_dr_"


class JsonFormatter(logging.Formatter):
    """Simple JSON formatter for restore logs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, LOG_TIME_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith(_EXTRA_PREFIX):
                payload[key[len(_EXTRA_PREFIX):]] = value
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(
    name: str,
    *,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    max_bytes: int = 20 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Configure and return a logger with JSON formatting."""

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter()
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        rotating = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        rotating.setFormatter(formatter)
        logger.addHandler(rotating)

    return logger


def extra_fields(**fields: Any) -> Dict[str, Any]:
    """Prefix *fields* so ``JsonFormatter`` lifts them into the payload."""

    return {f"{_EXTRA_PREFIX}{key}": value for key, value in fields.items() if value is not None}


def log_progress(
    logger: logging.Logger,
    *,
    operation: str,
    bytes_transferred: int,
    total_bytes: int,
    state: str,
    detail: Optional[str] = None,
) -> None:
    """Emit a structured progress log entry."""

    logger.info(
        "progress",
        extra=extra_fields(
            operation=operation,
            bytes_transferred=bytes_transferred,
            total_bytes=total_bytes,
            state=state,
            detail=detail,
        ),
    )


__all__ = ["JsonFormatter", "extra_fields", "log_progress", "setup_logging"]
