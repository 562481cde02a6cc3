"""UTC calendar helpers shared by ingestion and queries.

Dates are ``YYYY-MM-DD`` strings so they compare lexically, and event
timestamps are integer epoch milliseconds.
"""

import time
from datetime import date, datetime, timedelta, timezone


def now_ms() -> int:
    return int(time.time() * 1000)


def utc_date(timestamp_ms: int) -> str:
    """Return the UTC calendar date of an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%d")


def start_of_day_ms(day: str) -> int:
    """Epoch milliseconds of 00:00 UTC on ``day``."""
    parsed = date.fromisoformat(day)
    start = datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)
    return int(start.timestamp() * 1000)


def parse_day(value: str) -> str:
    """Validate a ``YYYY-MM-DD`` string, raising ``ValueError`` otherwise."""
    return date.fromisoformat(value).isoformat()
