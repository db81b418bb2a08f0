"""Tests for logging utilities."""

from __future__ import annotations

import json
import logging

from mailroom.core.config import LoggingSettings
from mailroom.core.logging import JsonLineFormatter, configure_logging


def test_configure_logging_sets_root_level() -> None:
    """configure_logging should set the root logger level according to settings."""

    settings = LoggingSettings(level="DEBUG", structured=False)
    configure_logging(settings)
    assert logging.getLogger().level == logging.DEBUG


def test_structured_logging_emits_json_lines() -> None:
    configure_logging(LoggingSettings(level="WARNING", structured=True))
    root = logging.getLogger()
    assert root.level == logging.WARNING
    formatter = root.handlers[0].formatter
    assert isinstance(formatter, JsonLineFormatter)

    record = logging.LogRecord("mailroom.test", logging.WARNING, __file__, 1, "hello", None, None)
    assert '"message": "hello"' in formatter.format(record)

    quoted = logging.LogRecord(
        "mailroom.mutations",
        logging.WARNING,
        __file__,
        1,
        "Bulk %s rejected: %s",
        ("archive", 'Message is already in "archive"\nsecond line'),
        None,
    )
    line = formatter.format(quoted)
    assert "\n" not in line
    entry = json.loads(line)
    assert entry["message"] == 'Bulk archive rejected: Message is already in "archive"\nsecond line'
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "mailroom.mutations"


def test_library_loggers_are_quieted() -> None:
    configure_logging(LoggingSettings(level="DEBUG", library_level="ERROR"))

    assert logging.getLogger("httpx").level == logging.ERROR
    assert logging.getLogger("uvicorn.access").level == logging.ERROR
    assert logging.getLogger("mailroom.cache").getEffectiveLevel() == logging.DEBUG
