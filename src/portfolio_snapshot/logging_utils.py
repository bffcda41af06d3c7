"""Logging configuration helpers for the daily valuation job."""
from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

NOISY_LOGGERS = ("urllib3", "apscheduler.executors.default")


def _coerce_level(level: str | int) -> int:
    """Translate a user provided level into a numeric log level."""

    if isinstance(level, int):
        return level
    name = level.strip().upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(level: str | int | None = None, *, force: bool = False) -> None:
    """Configure the root logger for console output.

    The log level defaults to the ``PORTFOLIO_SNAPSHOT_LOG_LEVEL`` environment
    variable when ``level`` is not provided, falling back to INFO when the value
    is missing or unknown. ``force`` mirrors :func:`logging.basicConfig`'s
    ``force`` parameter and allows callers to reconfigure logging when required.
    """

    try:
        resolved_level = _coerce_level(
            level if level is not None else os.getenv("PORTFOLIO_SNAPSHOT_LOG_LEVEL", "INFO")
        )
    except ValueError:
        resolved_level = logging.INFO

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))

    root_logger = logging.getLogger()
    if root_logger.handlers and not force:
        root_logger.setLevel(resolved_level)
        return

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, force=force)


__all__ = ["configure_logging"]
