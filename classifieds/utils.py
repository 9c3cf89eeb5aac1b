"""Shared helpers: logging setup and clock access."""
import logging
from datetime import datetime, timezone

from classifieds.config import settings

_configured = False


def get_logger(name: str = "classifieds") -> logging.Logger:
    global _configured
    if not _configured:
        logging.basicConfig(
            format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
            level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        )
        _configured = True
    return logging.getLogger(name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
