# backend/roombook/core/logging.py
"""Logging setup shared by the API process and scripts."""

import logging
from typing import Optional

from .config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "urllib3")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once; calling again only adjusts the level."""
    resolved = (level or settings.log_level or "INFO").upper()
    numeric_level = getattr(logging, resolved, logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))
