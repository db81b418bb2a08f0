"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, datetime

__all__ = [
    "serialize_datetime",
    "parse_datetime",
    "utc_now",
]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC ``datetime``."""
    return datetime.now(UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Serialise ``value`` to ISO 8601 in UTC.

    Naive values are assumed to already be UTC so that lexical ordering of the
    stored strings matches chronological ordering.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_datetime(value: str | None, *, assume_utc: bool = True) -> datetime | None:
    """Parse an ISO 8601 string into a ``datetime`` instance."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None and assume_utc:
        return parsed.replace(tzinfo=UTC)
    return parsed
