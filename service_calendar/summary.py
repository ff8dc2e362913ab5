"""
Feed-wide summaries: the date window a feed covers, the selectable dates
inside it, and simple row counts.
"""

from datetime import date, timedelta

from feed.dates import parse_gtfs_date
from feed.entities import DateRange, GtfsDataset, ServiceStats


def date_range(dataset: GtfsDataset) -> DateRange | None:
    """
    Closed interval spanning every calendar start/end date and every
    exception date.  Returns None if the feed has no calendar rows and no
    exception rows, or none of their dates parse.
    """
    if not dataset.calendars and not dataset.calendar_dates:
        return None

    candidates = [
        parse_gtfs_date(value)
        for calendar in dataset.calendars
        for value in (calendar.start_date, calendar.end_date)
    ]
    candidates.extend(parse_gtfs_date(cd.date) for cd in dataset.calendar_dates)
    dates = [d for d in candidates if d is not None]
    if not dates:
        return None
    return DateRange(start=min(dates), end=max(dates))


def available_dates(dataset: GtfsDataset, today: date) -> list[date]:
    """
    Every day from max(today, range start) through the range end.
    Empty when the feed has no date range or today is already past its end.
    """
    window = date_range(dataset)
    if window is None:
        return []
    start = max(today, window.start)
    if start > window.end:
        return []
    return [start + timedelta(days=i) for i in range((window.end - start).days + 1)]


def service_stats(dataset: GtfsDataset) -> ServiceStats:
    service_ids = {c.service_id for c in dataset.calendars}
    service_ids.update(cd.service_id for cd in dataset.calendar_dates)
    return ServiceStats(
        total_calendars=len(dataset.calendars),
        total_exceptions=len(dataset.calendar_dates),
        total_trips=len(dataset.trips),
        total_routes=len(dataset.routes),
        unique_service_ids=len(service_ids),
    )
