"""Logging utilities for Meterway."""

import logging
import sys
from typing import Any

ROOT_LOGGER = "meterway"


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Configure the ``meterway`` logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_string: Custom format string.
        handler: Custom handler. Defaults to a stdout StreamHandler.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if format_string is None:
        format_string = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"

    if handler is None:
        handler = logging.StreamHandler(sys.stdout)

    handler.setFormatter(logging.Formatter(format_string))

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    # Repeated calls replace the handler.
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the ``meterway`` namespace.

    Args:
        name: Component name (e.g., "gateway", "quota").
    """
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class StructuredLogger:
    """Logger that appends ``key=value`` context to every message.

    Example:
        log = StructuredLogger("gateway").with_context(provider="openai")
        log.info("AI chat completed", tokens=120)
        # AI chat completed | provider=openai tokens=120
    """

    def __init__(self, name: str, context: dict[str, Any] | None = None):
        self._logger = get_logger(name)
        self._context: dict[str, Any] = dict(context or {})

    def with_context(self, **kwargs: Any) -> "StructuredLogger":
        """Return a child logger carrying additional context."""
        child = StructuredLogger.__new__(StructuredLogger)
        child._logger = self._logger
        child._context = {**self._context, **kwargs}
        return child

    def _format_message(self, message: str, **kwargs: Any) -> str:
        data = {**self._context, **kwargs}
        if data:
            pairs = [f"{k}={v}" for k, v in data.items()]
            return f"{message} | {' '.join(pairs)}"
        return message

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs: Any) -> None:
        self._logger.exception(self._format_message(message, **kwargs))
