"""Logging setup for the service and the CLI."""

from __future__ import annotations

import json
import logging.config
from typing import Any

from .config import LoggingSettings

# Loggers that are noisy at INFO: one line per outbound webhook or request.
_LIBRARY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JsonLineFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping for ``settings``."""
    if settings.structured:
        formatter: dict[str, Any] = {"()": JsonLineFormatter}
    else:
        formatter = {"format": "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"mailroom": formatter},
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "formatter": "mailroom",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            name: {"level": settings.library_level, "propagate": True}
            for name in _LIBRARY_LOGGERS
        },
        "root": {"handlers": ["stderr"], "level": settings.level},
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Install the console handler; safe to call more than once."""
    logging.config.dictConfig(build_logging_config(settings))


__all__ = ["JsonLineFormatter", "build_logging_config", "configure_logging"]
