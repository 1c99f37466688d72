"""Logging utilities with structured logging support

Every log line emitted while a request is being served carries the request's
correlation id and, for routes under ``/events/{code}``, the event code.
"""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional
from contextvars import ContextVar
import uuid

from .config import get_config

correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
event_code: ContextVar[Optional[str]] = ContextVar('event_code', default=None)

_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class RequestContextFilter(logging.Filter):
    """Copies the request context onto each record"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id.get() or "-"
        record.event_code = event_code.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        config = get_config()

        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": config.service_name,
            "version": config.service_version,
            "environment": config.environment,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in log_entry:
                continue
            # Unset context is rendered as "-" for text output only
            if key in ("correlation_id", "event_code") and value == "-":
                continue
            log_entry[key] = value

        return json.dumps(log_entry, default=str)


TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s %(event_code)s] %(message)s'


def setup_logging() -> None:
    """Setup application logging"""
    config = get_config()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(RequestContextFilter())
    if config.log_format.lower() == "json":
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    root_logger.addHandler(console_handler)

    # Third-party loggers are noisy at INFO
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get logger instance, configuring the root logger on first use"""
    if not logging.getLogger().handlers:
        setup_logging()

    return logging.getLogger(name)


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """Set correlation ID for request tracing"""
    corr_id = corr_id or str(uuid.uuid4())
    correlation_id.set(corr_id)
    return corr_id


def set_event_code(code: Optional[str]) -> None:
    """Tag subsequent log lines in this context with an event code"""
    event_code.set(code.upper() if code else None)
