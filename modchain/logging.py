"""Logging utilities for modchain commands."""

from __future__ import annotations

import logging
from pathlib import Path

from .models import Verbosity

_LOGGER_NAME = "modchain"

_LEVELS = {
    Verbosity.DEBUG: logging.DEBUG,
    Verbosity.NORMAL: logging.INFO,
    Verbosity.ERROR: logging.ERROR,
}


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the modchain hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def level_for(verbosity: Verbosity) -> int:
    """Map a verbosity to a logging level; silent modes disable output."""
    return _LEVELS.get(verbosity, logging.CRITICAL + 1)


def configure_logging(
    *, verbosity: Verbosity = Verbosity.NORMAL, log_file: Path | None = None
) -> logging.Logger:
    """Configure the modchain logger with console output and optional file sink."""
    level = level_for(verbosity)
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(min(level, logging.DEBUG) if log_file is not None else level)
    logger.propagate = False

    # Reset handlers to avoid duplicate output when the CLI is invoked multiple times.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter("[modchain] %(levelname)s %(message)s"))
    logger.addHandler(stream_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging", "get_logger", "level_for"]
