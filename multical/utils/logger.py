"""Structured logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import Iterable, Optional

from multical.utils.config import get_settings


_LOGGER_INITIALIZED = False


def apply_logger_levels(overrides: Iterable[tuple[str, str]]) -> None:
    """Set per-logger levels such as ``("multical.services.occupancy_service", "DEBUG")``.

    Lets one noisy layer (the occupancy recursion, uvicorn's access log) be
    tuned without touching the process-wide level.
    """
    for name, level in overrides:
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level {level!r} for logger {name!r}")
        logging.getLogger(name).setLevel(resolved)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Every service logs through the root handler installed here so skipped
    tags and failed calendar calls read the same in every layer.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    apply_logger_levels(settings.logger_levels)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)
