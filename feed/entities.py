"""
Immutable in-memory representation of a loaded GTFS feed.

Row types mirror the four GTFS tables the calendar explorer reads:
  calendar.txt       → ServiceCalendar
  calendar_dates.txt → CalendarException
  trips.txt          → Trip
  routes.txt         → Route

Rows are kept in feed order inside tuples.  Nothing here enforces
uniqueness or referential integrity: duplicate service_id / trip_id rows
are preserved exactly as ingested so the validator can report them.

Derived types (ServiceStatus, DayResolution, ValidationResult, ...) are
produced by the service_calendar and validation packages.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import IntEnum


class ExceptionType(IntEnum):
    """calendar_dates.txt exception_type wire values."""
    ADDED = 1
    REMOVED = 2


@dataclass(frozen=True)
class ServiceCalendar:
    service_id: str
    monday: bool = False
    tuesday: bool = False
    wednesday: bool = False
    thursday: bool = False
    friday: bool = False
    saturday: bool = False
    sunday: bool = False
    start_date: str = ""  # YYYYMMDD
    end_date: str = ""    # YYYYMMDD


@dataclass(frozen=True)
class CalendarException:
    service_id: str
    date: str  # YYYYMMDD
    exception_type: ExceptionType


@dataclass(frozen=True)
class Trip:
    trip_id: str
    route_id: str
    service_id: str
    trip_headsign: str | None = None
    trip_short_name: str | None = None
    direction_id: int | None = None          # 0 | 1
    block_id: str | None = None
    shape_id: str | None = None
    wheelchair_accessible: int | None = None  # 0 | 1 | 2
    bikes_allowed: int | None = None          # 0 | 1 | 2


@dataclass(frozen=True)
class Route:
    route_id: str
    agency_id: str | None = None
    route_short_name: str | None = None
    route_long_name: str | None = None
    route_desc: str | None = None
    route_type: int | None = None  # 3 = bus
    route_url: str | None = None
    route_color: str | None = None
    route_text_color: str | None = None
    route_sort_order: int | None = None


@dataclass(frozen=True)
class GtfsDataset:
    """One consistent snapshot of the four tables.  Missing tables are empty."""
    calendars: tuple[ServiceCalendar, ...] = ()
    calendar_dates: tuple[CalendarException, ...] = ()
    trips: tuple[Trip, ...] = ()
    routes: tuple[Route, ...] = ()


# ---------------------------------------------------------------------------
# Derived results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServiceStatus:
    service_id: str
    is_active: bool
    is_exception: bool
    exception_type: ExceptionType | None = None
    calendar: ServiceCalendar | None = None  # None for exception-only services


@dataclass(frozen=True)
class TripWithRoute:
    trip: Trip
    route: Route | None = None


@dataclass(frozen=True)
class DayResolution:
    date: date
    date_string: str  # YYYYMMDD
    base_calendars: list[ServiceStatus]
    active_calendars: list[ServiceStatus]
    excluded_calendars: list[ServiceStatus]
    active_trips: list[TripWithRoute]


@dataclass(frozen=True)
class ValidationIssue:
    file: str
    field: str
    message: str
    duplicates: list[str]
    type: str = "error"


@dataclass(frozen=True)
class ValidationStats:
    trips_checked: int
    calendars_checked: int
    calendar_dates_checked: int


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    stats: ValidationStats
    issues: list[ValidationIssue] = field(default_factory=list)


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date


@dataclass(frozen=True)
class ServiceStats:
    total_calendars: int
    total_exceptions: int
    total_trips: int
    total_routes: int
    unique_service_ids: int
