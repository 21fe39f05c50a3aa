"""Timestamp helpers enforcing timezone-aware ISO-8601 values."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any


class TimestampError(ValueError):
    """Raised when timestamps are malformed or lack timezone information."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    if not value:
        raise TimestampError("timestamp missing")
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value)
        try:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise TimestampError(f"timestamp {value!r} is not ISO-8601 compatible") from exc
    if dt.tzinfo is None:
        raise TimestampError("timestamp must include timezone information")
    return dt.astimezone(timezone.utc)


def parse_optional_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return parse_timestamp(value)


def parse_date(value: Any) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise TimestampError(f"date {value!r} is not ISO-8601 compatible") from exc


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
