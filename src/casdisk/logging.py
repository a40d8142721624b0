"""
Structured logging for casdisk.

Provides:
- Context variables for the cache root and key being written (contextvars)
- JSONFormatter for machine-readable logs to file
- ContextRichHandler for pretty console output
- ContextLogger wrapper that attaches context to all log calls
- setup_logging() that configures both file and console handlers; until it
  runs, records go to whatever handlers the host application configured
- log_context() context manager for scoped context
- get_logger() factory
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

_cache_var: ContextVar[str | None] = ContextVar("cache", default=None)
_key_var: ContextVar[str | None] = ContextVar("key", default=None)


def get_cache() -> str | None:
    """Get the current cache root from context."""
    return _cache_var.get()


def get_key() -> str | None:
    """Get the current key from context."""
    return _key_var.get()


@contextmanager
def log_context(
    cache: str | Path | None = None,
    key: str | None = None,
) -> Generator[None, None, None]:
    """Context manager for scoped logging context.

    Args:
        cache: Cache root to set in context.
        key: Index key to set in context.

    Yields:
        None. Context variables are set for the duration of the context.
    """
    old_cache = _cache_var.get()
    old_key = _key_var.get()

    try:
        if cache is not None:
            _cache_var.set(str(cache))
        if key is not None:
            _key_var.set(key)
        yield
    finally:
        _cache_var.set(old_cache)
        _key_var.set(old_key)


class JSONFormatter(logging.Formatter):
    """JSON formatter for machine-readable log files.

    Produces JSON Lines format with structured context.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        cache = get_cache()
        key = get_key()
        if cache:
            log_obj["cache"] = cache
        if key:
            log_obj["key"] = key

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class ContextRichHandler(RichHandler):
    """Rich handler that includes the current key in console output."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        """Override to add context prefix."""
        level_text = super().get_level_text(record)

        key = get_key()
        if key:
            # Keys are arbitrary caller text, so no markup here
            return Text.assemble(level_text, " ", (key[:24], "magenta"))

        return level_text


class ContextLogger:
    """Logger wrapper that automatically attaches context to log calls.

    Keyword arguments other than the standard logging ones become
    structured context on the record.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        """Get the logger name."""
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        """Internal logging method that adds context."""
        extra = kwargs.pop("extra", {})

        cache = get_cache()
        key = get_key()
        if cache:
            extra.setdefault("cache", cache)
        if key:
            extra.setdefault("key", key)

        for name in list(kwargs.keys()):
            if name not in ("stack_info", "stacklevel"):
                extra[name] = kwargs.pop(name)

        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": extra})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None

# Silent until the host or Settings.configure_logging() installs handlers
logging.getLogger("casdisk").addHandler(logging.NullHandler())


def get_console() -> Console:
    """Get the global rich console."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with JSON file handler and rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    root_logger = logging.getLogger("casdisk")
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not name.startswith("casdisk"):
        name = f"casdisk.{name}"

    return ContextLogger(logging.getLogger(name))
