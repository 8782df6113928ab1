"""Structured logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from seat_allocator.utils.config import get_settings


AUDIT_LOGGER_NAME = "seat_allocator.audit"

_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Engine, ledger and HTTP layers all write through the same stdout handler
    so a booking, its history entry and the request that caused it can be
    read side by side.
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
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)


def get_audit_logger() -> logging.Logger:
    """Logger that mirrors every persisted history entry at DEBUG level."""
    return get_logger(AUDIT_LOGGER_NAME)
