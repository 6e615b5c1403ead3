"""
Structured logging for the export builder.

Modules log through `get_logger(__name__)`; export milestones append
``key=value`` pairs built by `fields()` so one export can be followed by its
page / model across the engine, the source and the dispatcher.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

from export_builder.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Stdout logger at *level* (``settings.log_level`` when omitted)."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
        logger.addHandler(handler)
    level_name = (level or get_settings().log_level).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    return logger


def fields(**values: Any) -> str:
    """``fields(page="users", rows=3)`` -> ``"page=users | rows=3"``; None values are skipped."""
    return " | ".join(f"{key}={value}" for key, value in values.items() if value is not None)
