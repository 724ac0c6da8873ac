"""Logging helpers for the gateway."""

from __future__ import annotations

import logging

from query_gateway.config import settings


def get_logger(name: str) -> logging.Logger:
    """Return a namespaced logger with the configured level."""

    logger = logging.getLogger(f"query_gateway.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(settings.log_level.upper())
    return logger
