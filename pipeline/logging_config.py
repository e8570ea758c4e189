"""Unified logging configuration for the pipeline.

Two named loggers write to their own files under LOG_DIR as well as the
console: ``pipeline.runs`` for run-level events and ``pipeline.push`` for
push deliveries. Module loggers (``logging.getLogger(__name__)``) are left
to the host application's configuration.
"""
from __future__ import annotations

import logging
from pathlib import Path

from .config import LOG_DIR as _LOG_DIR_SETTING
from .config import LOG_LEVEL

# Log directory, configurable via LOG_DIR env var for containers
LOG_DIR = Path(_LOG_DIR_SETTING) if _LOG_DIR_SETTING else Path(__file__).parent.parent / "logs"

FILE_FORMAT = "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(message)s"

# Prevent duplicate handlers
_configured_loggers: set[str] = set()


def _level() -> int:
    level = logging.getLevelName(LOG_LEVEL)
    return level if isinstance(level, int) else logging.INFO


def setup_logger(name: str, filename: str) -> logging.Logger:
    """Attach file and console handlers to ``name`` once.

    Args:
        name: Logger name (e.g., 'pipeline.runs')
        filename: Log file name under LOG_DIR (e.g., 'runs.log')
    """
    logger = logging.getLogger(name)
    if name in _configured_loggers:
        return logger

    level = _level()
    logger.setLevel(level)
    logger.propagate = False

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    handlers = (
        (logging.FileHandler(LOG_DIR / filename, encoding="utf-8"), FILE_FORMAT),
        (logging.StreamHandler(), CONSOLE_FORMAT),
    )
    for handler, fmt in handlers:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)

    _configured_loggers.add(name)
    return logger


def get_engine_logger() -> logging.Logger:
    """Logger for run-level workflow events (start, outcome, spend)."""
    return setup_logger("pipeline.runs", "runs.log")


def get_push_logger() -> logging.Logger:
    """Logger for push channel deliveries."""
    return setup_logger("pipeline.push", "push.log")
