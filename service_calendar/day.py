from datetime import date

from feed.dates import format_gtfs_date
from feed.entities import DayResolution, GtfsDataset
from service_calendar.projector import project
from service_calendar.resolver import resolve, resolve_base


def resolve_day(dataset: GtfsDataset, service_date: date) -> DayResolution:
    """Everything known about one service date: base rule, overrides, trips."""
    active, excluded = resolve(dataset.calendars, dataset.calendar_dates, service_date)
    active_ids = {status.service_id for status in active}
    return DayResolution(
        date=service_date,
        date_string=format_gtfs_date(service_date),
        base_calendars=resolve_base(dataset.calendars, service_date),
        active_calendars=active,
        excluded_calendars=excluded,
        active_trips=project(active_ids, dataset.trips, dataset.routes),
    )
