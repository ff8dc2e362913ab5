"""
Resolves which GTFS services operate on a given calendar date.

Resolution overlays two tables:
  calendar.txt       : weekly pattern (seven weekday flags) inside an
                       inclusive [start_date, end_date] window
  calendar_dates.txt : per-date exceptions (1 = added, 2 = removed)

Per calendar row (rows are NOT merged by service_id; a duplicated
service_id is evaluated once per row and may contribute twice):

  exception | type    | base active | result
  ----------+---------+-------------+--------------------------------
  none      |         | yes         | active
  none      |         | no          | -
  found     | added   | any         | active, exception=added
  found     | removed | yes         | excluded, exception=removed
  found     | removed | no          | -   (nothing to remove)

When several exception rows match the same (service_id, date), the first
one in feed order wins.  The validator reports such rows separately.

Exception-only services (service_id absent from calendar.txt) are then
appended from the exception table: "added" rows become active entries
without a calendar back-reference; "removed" rows produce nothing.

Malformed dates never match.  Nothing in this module raises.
"""

import logging
from datetime import date
from typing import Iterable, Sequence

from feed.dates import parse_gtfs_date
from feed.entities import CalendarException, ExceptionType, ServiceCalendar, ServiceStatus

logger = logging.getLogger(__name__)

# Indexed by date.weekday() (Monday == 0)
_WEEKDAY_FLAGS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _in_range(calendar: ServiceCalendar, service_date: date) -> bool:
    start = parse_gtfs_date(calendar.start_date)
    end = parse_gtfs_date(calendar.end_date)
    if start is None or end is None:
        return False
    # An inverted window (start > end) never matches.
    return start <= service_date <= end


def _runs_on_weekday(calendar: ServiceCalendar, service_date: date) -> bool:
    return bool(getattr(calendar, _WEEKDAY_FLAGS[service_date.weekday()]))


def is_base_active(calendar: ServiceCalendar, service_date: date) -> bool:
    """True if the calendar's weekly pattern and date window cover service_date."""
    return _in_range(calendar, service_date) and _runs_on_weekday(calendar, service_date)


def _exceptions_on(
    exceptions: Iterable[CalendarException], service_date: date
) -> list[CalendarException]:
    return [cd for cd in exceptions if parse_gtfs_date(cd.date) == service_date]


def resolve_base(
    calendars: Sequence[ServiceCalendar], service_date: date
) -> list[ServiceStatus]:
    """
    Calendars active by their regular rule alone (date window + weekday),
    ignoring calendar_dates.txt entirely.
    """
    return [
        ServiceStatus(
            service_id=calendar.service_id,
            is_active=True,
            is_exception=False,
            calendar=calendar,
        )
        for calendar in calendars
        if is_base_active(calendar, service_date)
    ]


def resolve(
    calendars: Sequence[ServiceCalendar],
    exceptions: Sequence[CalendarException],
    service_date: date,
) -> tuple[list[ServiceStatus], list[ServiceStatus]]:
    """
    Return (active, excluded) service statuses for service_date.

    Active entries come in calendar order, followed by exception-only
    services in exception order.  Excluded entries only ever contain
    calendars that were active under their base rule.
    """
    active: list[ServiceStatus] = []
    excluded: list[ServiceStatus] = []

    # Only exceptions dated service_date can affect the result; first row
    # per service_id wins.
    todays_exceptions = _exceptions_on(exceptions, service_date)
    first_exception: dict[str, CalendarException] = {}
    for cd in todays_exceptions:
        first_exception.setdefault(cd.service_id, cd)

    for calendar in calendars:
        base_active = is_base_active(calendar, service_date)
        exception = first_exception.get(calendar.service_id)

        if exception is None:
            if base_active:
                active.append(ServiceStatus(
                    service_id=calendar.service_id,
                    is_active=True,
                    is_exception=False,
                    calendar=calendar,
                ))
        elif exception.exception_type == ExceptionType.ADDED:
            active.append(ServiceStatus(
                service_id=calendar.service_id,
                is_active=True,
                is_exception=True,
                exception_type=ExceptionType.ADDED,
                calendar=calendar,
            ))
        elif base_active:
            excluded.append(ServiceStatus(
                service_id=calendar.service_id,
                is_active=False,
                is_exception=True,
                exception_type=ExceptionType.REMOVED,
                calendar=calendar,
            ))

    calendar_service_ids = {calendar.service_id for calendar in calendars}
    for cd in todays_exceptions:
        if cd.service_id in calendar_service_ids:
            continue
        # A "removed" row here has no base service to act on.
        if cd.exception_type == ExceptionType.ADDED:
            active.append(ServiceStatus(
                service_id=cd.service_id,
                is_active=True,
                is_exception=True,
                exception_type=ExceptionType.ADDED,
            ))

    logger.debug(
        "Resolved %s: %d active, %d excluded.", service_date, len(active), len(excluded)
    )
    return active, excluded


def active_service_ids(
    calendars: Sequence[ServiceCalendar],
    exceptions: Sequence[CalendarException],
    service_date: date,
) -> set[str]:
    """service_ids with at least one active status on service_date."""
    active, _ = resolve(calendars, exceptions, service_date)
    return {status.service_id for status in active}
