"""
GTFS date helpers.

GTFS stores calendar dates as 8-digit YYYYMMDD strings with no time-of-day
or timezone component.  Everything above the ingestion layer works with
datetime.date values; these two functions are the only conversion points.
"""

from datetime import date, datetime
from functools import lru_cache

GTFS_DATE_FORMAT = "%Y%m%d"


@lru_cache(maxsize=4096)
def parse_gtfs_date(value: str) -> date | None:
    """
    Convert a YYYYMMDD string to a date.
    Returns None for blank or malformed input instead of raising.
    """
    if not value:
        return None
    value = value.strip()
    if len(value) != 8 or not value.isdigit():
        return None
    try:
        return datetime.strptime(value, GTFS_DATE_FORMAT).date()
    except ValueError:
        return None


def format_gtfs_date(value: date) -> str:
    """Render a date as YYYYMMDD."""
    return value.strftime(GTFS_DATE_FORMAT)
