"""Timestamp helpers - everything inside the app is timezone-aware UTC"""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Default clock used by services when none is injected"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """
    Parse the timestamp shapes the billing and job providers send.

    Accepts ISO-8601 strings (with or without a trailing 'Z'), epoch
    milliseconds, or datetimes. Returns None for empty input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)

    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for JSON storage"""
    if value is None:
        return None
    return ensure_utc(value).isoformat()
