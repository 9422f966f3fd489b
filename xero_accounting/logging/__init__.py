"""Structured logging for the Xero client, CLI and API.

Provides structured logging for:
- Xero API calls (endpoint, status, latency)
- Service requests (method, path, status, latency)
- Command execution timing

Supports:
- Console logging on stderr (stdout carries CLI output)
- Rotating file logging
- JSON or text rendering
"""

import logging
import os
import sys
import time
from contextvars import ContextVar
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog

# Request context for correlating logs
_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class EventCategory(str, Enum):
    """Categories of logged events."""
    XERO_API = "xero_api"
    COMMAND = "command"
    SYSTEM = "system"


class LogConfig:
    """Logging configuration from environment variables."""

    # Environment: development, production
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Log level: DEBUG, INFO, WARNING, ERROR
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "WARNING")

    # Log format: json or text
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json" if ENVIRONMENT == "production" else "text")

    # File logging
    LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "false").lower() == "true"
    LOG_DIR: Path = Path(os.getenv("LOG_DIR", "logs"))
    LOG_FILE_MAX_BYTES: int = int(os.getenv("LOG_FILE_MAX_BYTES", 10 * 1024 * 1024))  # 10MB
    LOG_FILE_BACKUP_COUNT: int = int(os.getenv("LOG_FILE_BACKUP_COUNT", 5))


def setup_file_logging() -> Optional[logging.Handler]:
    """Set up file-based logging with rotation."""
    if not LogConfig.LOG_TO_FILE:
        return None

    LogConfig.LOG_DIR.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        LogConfig.LOG_DIR / "xero.log",
        maxBytes=LogConfig.LOG_FILE_MAX_BYTES,
        backupCount=LogConfig.LOG_FILE_BACKUP_COUNT,
    )
    handler.setFormatter(logging.Formatter('%(message)s'))
    handler.setLevel(getattr(logging, LogConfig.LOG_LEVEL))

    return handler


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Override of LOG_LEVEL
    """
    log_level = getattr(logging, (level or LogConfig.LOG_LEVEL).upper(), logging.WARNING)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    root_logger.addHandler(console_handler)

    file_handler = setup_file_logging()
    if file_handler:
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_request_context,
        add_environment_context,
    ]

    if LogConfig.LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.get_logger(__name__).debug(
        "logging_configured",
        environment=LogConfig.ENVIRONMENT,
        log_level=logging.getLevelName(log_level),
        log_format=LogConfig.LOG_FORMAT,
        file_logging=LogConfig.LOG_TO_FILE,
    )


def add_request_context(logger, method_name, event_dict):
    """Add request context to log events."""
    request_id = _request_id.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_environment_context(logger, method_name, event_dict):
    """Add environment info to log events."""
    event_dict["env"] = LogConfig.ENVIRONMENT
    return event_dict


def set_request_context(request_id: Optional[str] = None):
    """Set request context for correlation."""
    if request_id:
        _request_id.set(request_id)


def clear_request_context():
    """Clear request context."""
    _request_id.set(None)


logger = structlog.get_logger(__name__)


def log_xero_request(
    method: str,
    endpoint: str,
    status_code: Optional[int],
    duration_ms: float,
    error: Optional[str] = None,
):
    """Log a call to the Xero API.

    Args:
        method: HTTP method
        endpoint: API path or URL
        status_code: Response status (None when no response arrived)
        duration_ms: Request duration in milliseconds
        error: Error message if failed
    """
    failed = status_code is None or status_code >= 400
    getattr(logger, "warning" if failed else "debug")(
        "xero_request",
        category=EventCategory.XERO_API.value,
        method=method,
        endpoint=endpoint[:100],
        status_code=status_code,
        duration_ms=round(duration_ms, 1),
        error=error,
    )


def log_api_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    error: Optional[str] = None,
):
    """Log a request served by the API wrapper.

    Args:
        method: HTTP method
        path: Request path
        status_code: Response status code
        duration_ms: Request duration
        error: Error message if failed
    """
    level = "info" if status_code < 400 else "warning" if status_code < 500 else "error"
    getattr(logger, level)(
        "api_request",
        category=EventCategory.SYSTEM.value,
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=round(duration_ms, 1),
        error=error,
    )


class LogTimer:
    """Context manager for timing and logging operations."""

    def __init__(
        self,
        operation: str,
        category: EventCategory = EventCategory.COMMAND,
        **extra_fields,
    ):
        self.operation = operation
        self.category = category
        self.extra_fields = extra_fields
        self.start_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type is not None:
            logger.warning(
                self.operation,
                category=self.category.value,
                duration_ms=round(self.duration_ms, 1),
                success=False,
                error=str(exc_val),
                **self.extra_fields,
            )
        else:
            logger.info(
                self.operation,
                category=self.category.value,
                duration_ms=round(self.duration_ms, 1),
                success=True,
                **self.extra_fields,
            )

        return False  # Don't suppress exceptions
