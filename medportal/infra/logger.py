"""
Logger - Logging setup for the onboarding engine.

Everything logs under the "medportal" namespace. Context passed to
AsyncLogContext (session id, operation) is appended to each line.
"""

import logging
import sys
import time
from typing import Optional
from pathlib import Path


ROOT_LOGGER = "medportal"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s%(context_suffix)s"

_initialized = False


class ContextFilter(logging.Filter):
    """Render record.context as a ' [key=value ...]' suffix."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = getattr(record, "context", None) or {}
        pairs = " ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        record.context_suffix = f" [{pairs}]" if pairs else ""
        return True


class ColorFormatter(logging.Formatter):
    """Colours the level name on a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _handler(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())
    return handler


def setup_logger(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    force: bool = False
) -> None:
    """
    Configure the medportal logger tree.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that receives a plain-text copy
        format_string: Optional custom format string
        force: Re-apply even if already configured
    """
    global _initialized

    if _initialized and not force:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)
    format_string = format_string or DEFAULT_FORMAT
    if "%(context_suffix)s" not in format_string:
        format_string += "%(context_suffix)s"

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_formatter = (
        ColorFormatter(format_string) if sys.stdout.isatty() else logging.Formatter(format_string)
    )
    logger.addHandler(_handler(logging.StreamHandler(sys.stdout), console_formatter))

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(_handler(logging.FileHandler(path), logging.Formatter(format_string)))

    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    _initialized = True
    logger.debug(f"Logging configured at {logging.getLevelName(log_level)}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the medportal namespace.

    Args:
        name: Usually __name__

    Returns:
        Logger instance
    """
    if not _initialized:
        setup_logger()

    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


class AsyncLogContext:
    """
    Times an awaited backend round-trip.

    Failures are logged at WARNING and re-raised.
    """

    def __init__(self, logger: logging.Logger, operation: str, **context):
        self.logger = logger
        self.operation = operation
        self.context = context
        self._started = 0.0

    async def __aenter__(self) -> "AsyncLogContext":
        self._started = time.monotonic()
        self.logger.debug(f"{self.operation} started", extra={"context": self.context})
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed_ms = int((time.monotonic() - self._started) * 1000)

        if exc_type:
            self.logger.warning(
                f"{self.operation} failed after {elapsed_ms}ms: {exc_val}",
                extra={"context": self.context}
            )
        else:
            self.logger.debug(
                f"{self.operation} done in {elapsed_ms}ms",
                extra={"context": self.context}
            )

        return False
