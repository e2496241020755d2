"""UTC timestamp utilities for hourly and daily periods."""

from datetime import datetime, timezone

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400


def start_of_hour(ts: int) -> int:
    return ts - ts % SECONDS_PER_HOUR


def start_of_day(ts: int) -> int:
    return ts - ts % SECONDS_PER_DAY


def normalize_timestamp(ts: int, hourly: bool) -> int:
    """Floor to the hour for hourly samples, otherwise to the UTC day."""
    return start_of_hour(ts) if hourly else start_of_day(ts)


def hour_of_day(ts: int) -> int:
    return datetime.fromtimestamp(ts, tz=timezone.utc).hour


def format_date(ts: int) -> str:
    """YYYY-MM-DD for a unix timestamp."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")
