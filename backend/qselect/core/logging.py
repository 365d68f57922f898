"""Structured JSON logging configuration."""

import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from qselect.core.config import settings


class RequestContextFilter(logging.Filter):
    """Stamps the active request ID (if any) on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            from qselect.common.request_id import current_request_id

            record.request_id = current_request_id()
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with service, env and request correlation fields."""

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = settings.PROJECT_NAME
        log_record["env"] = settings.ENV
        log_record["event"] = record.getMessage()
        if log_record.get("request_id") is None:
            log_record.pop("request_id", None)

        log_record.pop("message", None)
        log_record.pop("asctime", None)


def setup_logging(level: str | None = None) -> None:
    """
    Route every logger through one JSON stdout handler.

    Args:
        level: Root level name (defaults to settings.LOG_LEVEL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(logger)s", datefmt="%Y-%m-%dT%H:%M:%S"))
    handler.addFilter(RequestContextFilter())
    root_logger.addHandler(handler)

    # Per-statement SQL and per-request access lines drown out selection events
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
