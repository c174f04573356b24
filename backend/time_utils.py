"""
Time utilities for the task tree service.

This module provides a single source of truth for time operations. Every
timestamp that crosses a boundary (database rows, request bodies, optimizer
payloads) is normalized here to seconds since the Unix epoch before it is
compared against anything.
"""

from datetime import datetime, timezone
from typing import Union

from errors import InvalidField

Timestamp = Union[datetime, int, float, str]


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Attach UTC to naive datetimes (SQLite drops tzinfo on read) and convert
    aware ones to UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_seconds(value: Timestamp, field: str = "timestamp") -> float:
    """
    Normalize a timestamp to seconds since epoch.

    Accepts datetimes (naive ones are taken as UTC), epoch seconds as int or
    float, and ISO-8601 strings (a trailing ``Z`` is accepted).

    Raises:
        InvalidField: if the value cannot be interpreted as a timestamp
    """
    if isinstance(value, bool):
        raise InvalidField(field, "boolean is not a timestamp")
    if isinstance(value, datetime):
        return ensure_utc(value).timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text)).timestamp()
        except ValueError:
            raise InvalidField(field, f"not an ISO-8601 timestamp: {value!r}")
    raise InvalidField(field, f"unsupported timestamp type {type(value).__name__}")


def to_utc_datetime(value: Timestamp, field: str = "timestamp") -> datetime:
    """
    Normalize a timestamp to an aware UTC datetime before it is stored.

    SQLite keeps only the wall-clock part of a datetime, so anything written
    to the database must already be in UTC.
    """
    return datetime.fromtimestamp(to_epoch_seconds(value, field), tz=timezone.utc)


def seconds_until(due: Timestamp, now: Timestamp) -> float:
    """Seconds from ``now`` until ``due``; negative once the due time has passed."""
    return to_epoch_seconds(due, "due_at") - to_epoch_seconds(now, "now")
