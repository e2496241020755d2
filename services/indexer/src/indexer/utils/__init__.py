"""Utility modules."""

from services.indexer.src.indexer.utils.timestamps import (
    format_date,
    hour_of_day,
    normalize_timestamp,
    start_of_day,
    start_of_hour,
)

__all__ = [
    "start_of_hour",
    "start_of_day",
    "normalize_timestamp",
    "hour_of_day",
    "format_date",
]
