"""Logging setup shared by the API process and client tooling."""

from __future__ import annotations

import logging
import logging.config
from typing import Optional

from app.config import get_settings

DEFAULT_LOGGER_NAME = "chatsync"


class LoggingConfig:
    """Apply a dictConfig once per process; level comes from LOG_LEVEL."""

    _configured = False

    def __init__(self, level: Optional[str] = None) -> None:
        if LoggingConfig._configured:
            return
        log_level = (level or get_settings().log_level or "INFO").upper()
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "default": {
                        "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                    },
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "formatter": "default",
                    },
                },
                "loggers": {
                    "app": {"level": log_level},
                    DEFAULT_LOGGER_NAME: {"level": log_level},
                },
                "root": {"handlers": ["console"], "level": log_level},
            }
        )
        LoggingConfig._configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger under the service namespace."""
    if not name:
        return logging.getLogger(DEFAULT_LOGGER_NAME)
    return logging.getLogger(f"{DEFAULT_LOGGER_NAME}.{name}")
