"""
Timezone and instant utilities.

Records store instants as integer milliseconds since the epoch; every notion
of a "day" is derived here from an explicit time zone.
"""

import time
from datetime import date, datetime, timedelta, timezone

import pytz
from dateutil import parser

MS_PER_SECOND = 1000
MS_PER_HOUR = 60 * 60 * MS_PER_SECOND
MS_PER_DAY = 24 * MS_PER_HOUR
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_ms() -> int:
    """Current instant in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def ms_to_datetime(timestamp_ms: int, timezone_str: str = "UTC") -> datetime:
    """
    Convert epoch milliseconds to an aware datetime in the given zone.

    Args:
        timestamp_ms: Milliseconds since the epoch.
        timezone_str: Target timezone.

    Returns:
        Timezone-aware datetime.
    """
    utc_dt = EPOCH + timedelta(milliseconds=timestamp_ms)
    return utc_dt.astimezone(pytz.timezone(timezone_str))


def datetime_to_ms(dt: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    if dt.tzinfo is None:
        raise ValueError("datetime_to_ms requires a timezone-aware datetime")
    return (dt - EPOCH) // timedelta(milliseconds=1)


def local_hour_instant(day: date, hour: int, timezone_str: str) -> datetime:
    """
    Build the aware datetime for ``hour:00`` on ``day`` in local wall-clock time.

    Args:
        day: Calendar date.
        hour: Hour of day (0-23).
        timezone_str: Timezone string.

    Returns:
        Timezone-aware datetime.
    """
    tz = pytz.timezone(timezone_str)
    naive = datetime(day.year, day.month, day.day, hour)
    return tz.normalize(tz.localize(naive, is_dst=False))


def previous_day(day: date) -> date:
    """Calendar day before ``day``."""
    return day - timedelta(days=1)


def parse_iso_timestamp(value: str) -> int:
    """
    Parse an ISO-8601 string into epoch milliseconds.

    Naive values are treated as UTC.

    Args:
        value: ISO-8601 date/time string.

    Returns:
        Milliseconds since the epoch.
    """
    dt = parser.isoparse(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return datetime_to_ms(dt)


def utc_now_iso() -> str:
    """Current instant as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()
