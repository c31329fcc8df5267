"""
Structured logging for the News RAG Chat backend.

Provides consistent, parseable logging throughout the application
with keyword "extra data" support, a coloured console handler and an
optional JSON file handler (LOG_FILE).

Fields bound with log_context() (request_id for HTTP requests, client for
WebSocket connections) are attached to every record emitted inside the block,
including from the services the gateway calls.
"""

import os
import sys
import logging
import json
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional
from functools import wraps
import traceback

_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind fields to every log record emitted in this block (and tasks it spawns)."""
    token = _context.set({**_context.get(), **fields})
    try:
        yield
    finally:
        _context.reset(token)


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        data = dict(getattr(record, "extra_data", None) or {})
        tb = data.pop("traceback", None)
        if data:
            log_data["data"] = data
        if tb:
            log_data["traceback"] = tb

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter with colors."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m"
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output."""
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S")

        msg = f"{color}[{timestamp}] {record.levelname:8}{reset} | {record.name}: {record.getMessage()}"

        data = getattr(record, "extra_data", None) or {}
        fields = [f"{k}={v}" for k, v in data.items() if k != "traceback"]
        if fields:
            msg += " | " + ", ".join(fields)
        if data.get("traceback"):
            msg += f"\n{data['traceback']}"

        return msg


class AppLogger:
    """Application logger with keyword extra-data support."""

    _instances: Dict[str, 'AppLogger'] = {}

    def __init__(self, name: str, level: str = None):
        """
        Initialize logger.

        Args:
            name: Logger name (usually module name)
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        self.name = name
        self.level = level or os.getenv("LOG_LEVEL", "INFO")
        self.logger = logging.getLogger(name)
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Setup logging handlers."""
        if self.logger.handlers:
            return

        self.logger.setLevel(getattr(logging, self.level.upper(), logging.INFO))

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ConsoleFormatter())
        self.logger.addHandler(console_handler)

        log_file = os.getenv("LOG_FILE")
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(file_handler)

        self.logger.propagate = False

    def _log(self, level: int, message: str, extra: Optional[Dict[str, Any]] = None) -> None:
        """Internal logging method with extra data support."""
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(
            self.name, level, "", 0, message, (), None
        )
        data = {**_context.get(), **(extra or {})}
        if data:
            record.extra_data = data
        self.logger.handle(record)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, message, kwargs or None)

    def info(self, message: str, **kwargs) -> None:
        """Log info message."""
        self._log(logging.INFO, message, kwargs or None)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, kwargs or None)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log error message."""
        if exc_info:
            kwargs["traceback"] = traceback.format_exc()
        self._log(logging.ERROR, message, kwargs or None)

    def critical(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log critical message."""
        if exc_info:
            kwargs["traceback"] = traceback.format_exc()
        self._log(logging.CRITICAL, message, kwargs or None)

    def request(self, method: str, path: str, status: int, duration_ms: float, **kwargs) -> None:
        """Log HTTP request."""
        self.info(
            f"{method} {path} -> {status}",
            method=method,
            path=path,
            status=status,
            duration_ms=round(duration_ms, 2),
            **kwargs
        )

    def cache_op(self, operation: str, key: str, hit: Optional[bool] = None, **kwargs) -> None:
        """Log a cache read/write. Keys are truncated, values never logged."""
        label = operation if hit is None else f"{operation} ({'hit' if hit else 'miss'})"
        self.debug(
            f"Cache {label}",
            operation=operation,
            key=key[:60],
            **kwargs
        )

    def vector_query(self, collection: str, results_count: int, duration_ms: float, **kwargs) -> None:
        """Log vector index query."""
        self.info(
            f"Vector query on '{collection}': {results_count} results",
            collection=collection,
            results=results_count,
            duration_ms=round(duration_ms, 2),
            **kwargs
        )

    def llm_call(self, model: str, **kwargs) -> None:
        """Log LLM API call."""
        self.info(f"LLM call to {model}", model=model, **kwargs)

    def session_event(self, event: str, session_id: str, **kwargs) -> None:
        """Log session lifecycle event."""
        self.info(f"Session {event}", session_id=session_id, **kwargs)


def get_logger(name: str) -> AppLogger:
    """
    Get or create a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        AppLogger instance
    """
    if name not in AppLogger._instances:
        AppLogger._instances[name] = AppLogger(name)
    return AppLogger._instances[name]


def log_async_function_call(logger: AppLogger = None):
    """
    Decorator to log async function entry/exit.

    Args:
        logger: Optional logger instance
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            nonlocal logger
            if logger is None:
                logger = get_logger(func.__module__)

            func_name = func.__name__
            logger.debug(f"Entering {func_name}", args_count=len(args), kwargs_keys=list(kwargs.keys()))

            try:
                result = await func(*args, **kwargs)
                logger.debug(f"Exiting {func_name}", success=True)
                return result
            except Exception as e:
                logger.error(f"Exception in {func_name}: {str(e)}", exc_info=True)
                raise

        return wrapper
    return decorator
