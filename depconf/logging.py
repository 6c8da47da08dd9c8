"""Logging utilities for depconf runs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, MutableMapping, Tuple

_LOGGER_NAME = "depconf"

_CONSOLE_FORMAT = "[depconf] %(levelname)s %(message)s"
# repositories are processed on worker threads; name them when debugging
_VERBOSE_FORMAT = "[depconf] %(levelname)s %(threadName)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the depconf hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


class RepositoryLogger(logging.LoggerAdapter):
    """Prefixes every message with the repository being processed."""

    def __init__(self, logger: logging.Logger, repository: str) -> None:
        super().__init__(logger, {"repository": repository})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"{self.extra['repository']}: {msg}", kwargs


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Configure the depconf logger with console output and an optional file sink."""
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # configure_logging may run more than once per process (tests, service reloads)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(_VERBOSE_FORMAT if verbose else _CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger


def log_exception(
    logger: logging.Logger | logging.LoggerAdapter, message: str, exc: BaseException
) -> None:
    """Log ``exc``; the traceback is only included when debug output is enabled."""
    if logger.isEnabledFor(logging.DEBUG):
        logger.exception("%s: %s", message, exc)
    else:
        logger.error("%s: %s", message, exc)


__all__ = ["RepositoryLogger", "configure_logging", "get_logger", "log_exception"]
