"""
imagegen_core - Logging Configuration
=====================================

Structured logging for the generation core.

Features:
- Structured JSON output for production
- Human-readable format for development
- Request ID tracking across concurrent generations (contextvars based,
  so each asyncio task sees its own id)
- Performance timing utilities

Usage:
    from imagegen_core.logging_config import get_logger, LogContext

    logger = get_logger(__name__)
    logger.info("Submitting workflow", extra={"workflow": "portrait"})

    with LogContext("gen-1a2b3c"):
        logger.info("Polling")  # request_id=gen-1a2b3c
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import get_settings

__all__ = [
    "StructuredFormatter",
    "ContextFilter",
    "get_logger",
    "set_log_level",
    "get_request_id",
    "LogContext",
    "log_operation",
    "log_timing",
]

ROOT_LOGGER_NAME = "imagegen_core"

_request_id: ContextVar[str | None] = ContextVar("imagegen_request_id", default=None)

# Standard LogRecord attributes, never copied into JSON extras
_RESERVED_KEYS = frozenset(
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
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "asctime",
        "taskName",
    }
)


# =============================================================================
# CUSTOM FORMATTER
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured log messages.

    Supports both text and JSON output formats.
    """

    def __init__(
        self, fmt: str | None = None, datefmt: str | None = None, json_output: bool = False
    ):
        super().__init__(fmt, datefmt)
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        if self.json_output:
            return self._format_json(record)
        text = super().format(record)
        request_id = getattr(record, "request_id", "-")
        if request_id and request_id != "-" and "%(request_id)" not in (self._fmt or ""):
            text = f"{text} [request_id={request_id}]"
        return text

    def _format_json(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_KEYS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


# =============================================================================
# CONTEXT FILTER
# =============================================================================


class ContextFilter(logging.Filter):
    """Adds ``component`` and the current task's ``request_id`` to every record."""

    def __init__(self, component: str = ROOT_LOGGER_NAME):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        record.component = self.component
        record.request_id = get_request_id() or "-"
        return True


# =============================================================================
# LOGGER MANAGEMENT
# =============================================================================

_initialized: bool = False


def _setup_logging():
    """Attach handlers to the package root logger once."""
    global _initialized

    if _initialized:
        return

    config = get_settings().logging
    context_filter = ContextFilter()

    if config.json_output:
        formatter = StructuredFormatter(json_output=True)
    else:
        formatter = StructuredFormatter(fmt=config.format, datefmt=config.date_format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(context_filter)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    if config.file:
        log_path = Path(config.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.addFilter(context_filter)
        root_logger.addHandler(file_handler)

    # Stdout belongs to the tool transport
    root_logger.propagate = False

    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the ``imagegen_core`` namespace.

    Args:
        name: Usually __name__ of the calling module
    """
    _setup_logging()
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_log_level(level: str):
    """Change the package log level at runtime (DEBUG, INFO, WARNING, ...)."""
    _setup_logging()
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(getattr(logging, level.upper(), logging.INFO))


def get_request_id() -> str | None:
    """Request ID bound to the current task, if any."""
    return _request_id.get()


# =============================================================================
# LOGGING CONTEXT MANAGER
# =============================================================================


class LogContext:
    """
    Context manager for request-scoped logging.

    Usage:
        with LogContext("abc123"):
            logger.info("Processing request")  # request_id=abc123
    """

    def __init__(self, request_id: str):
        self.request_id = request_id
        self._token = None

    def __enter__(self):
        _setup_logging()
        self._token = _request_id.set(self.request_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _request_id.reset(self._token)
            self._token = None
        return False


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def log_operation(
    logger: logging.Logger,
    operation: str,
    success: bool,
    duration_ms: float | None = None,
    **extra,
):
    """Log an operation result with its duration."""
    status = "completed" if success else "failed"
    msg = f"{operation} {status}"
    if duration_ms is not None:
        msg += f" ({duration_ms:.1f}ms)"

    level = logging.INFO if success else logging.WARNING
    logger.log(level, msg, extra={"operation": operation, "success": success, **extra})


@contextmanager
def log_timing(logger: logging.Logger, operation: str, **extra):
    """
    Context manager to log operation timing.

    Usage:
        with log_timing(logger, "generate", backend="local"):
            result = await backend.generate(request)
    """
    start = time.perf_counter()
    success = False
    try:
        yield
        success = True
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        log_operation(logger, operation, success, duration_ms, **extra)
