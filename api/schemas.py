from __future__ import annotations
from typing import Literal
from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Feed rows
# ---------------------------------------------------------------------------

class CalendarRow(BaseModel):
    service_id: str
    monday: bool
    tuesday: bool
    wednesday: bool
    thursday: bool
    friday: bool
    saturday: bool
    sunday: bool
    start_date: str   # YYYYMMDD
    end_date: str     # YYYYMMDD


class RouteRow(BaseModel):
    route_id: str
    agency_id: str | None = None
    route_short_name: str | None = None
    route_long_name: str | None = None
    route_desc: str | None = None
    route_type: int | None = None
    route_url: str | None = None
    route_color: str | None = None
    route_text_color: str | None = None
    route_sort_order: int | None = None


class TripRow(BaseModel):
    trip_id: str
    route_id: str
    service_id: str
    trip_headsign: str | None = None
    trip_short_name: str | None = None
    direction_id: int | None = None
    block_id: str | None = None
    shape_id: str | None = None
    wheelchair_accessible: int | None = None
    bikes_allowed: int | None = None
    route: RouteRow | None = None


# ---------------------------------------------------------------------------
# GET /days/{date}
# ---------------------------------------------------------------------------

class ServiceStatusResult(BaseModel):
    service_id: str
    is_active: bool
    is_exception: bool
    exception_type: Literal["added", "removed"] | None = None
    calendar: CalendarRow | None = None  # None for exception-only services


class DayResponse(BaseModel):
    date: str          # YYYY-MM-DD
    date_string: str   # YYYYMMDD
    base_calendars: list[ServiceStatusResult]
    active_calendars: list[ServiceStatusResult]
    excluded_calendars: list[ServiceStatusResult]
    active_trips: list[TripRow]


class BaseCalendarsResponse(BaseModel):
    date_string: str
    base_calendars: list[ServiceStatusResult]


class TripsResponse(BaseModel):
    date_string: str
    trip_count: int
    trips: list[TripRow]


# ---------------------------------------------------------------------------
# GET /date-range, /dates, /stats
# ---------------------------------------------------------------------------

class DateRangeResponse(BaseModel):
    start: str | None   # YYYYMMDD
    end: str | None     # YYYYMMDD


class AvailableDatesResponse(BaseModel):
    today: str
    count: int
    dates: list[str]    # YYYYMMDD


class StatsResponse(BaseModel):
    total_calendars: int
    total_exceptions: int
    total_trips: int
    total_routes: int
    unique_service_ids: int


# ---------------------------------------------------------------------------
# GET /validation
# ---------------------------------------------------------------------------

class ValidationIssueResult(BaseModel):
    type: Literal["error", "warning"]
    file: str
    field: str
    message: str
    duplicates: list[str]


class ValidationStatsResult(BaseModel):
    trips_checked: int
    calendars_checked: int
    calendar_dates_checked: int


class ValidationResponse(BaseModel):
    is_valid: bool
    issues: list[ValidationIssueResult]
    stats: ValidationStatsResult


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class FeedStats(BaseModel):
    calendars: int
    exceptions: int
    trips: int
    routes: int
    snapshot_loaded: bool
    loaded_at: str | None
    next_refresh_at: str | None


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
    feed: FeedStats


# ---------------------------------------------------------------------------
# POST /ingest/*
# ---------------------------------------------------------------------------

class IngestResponse(BaseModel):
    status: Literal["ok"]
    message: str
    files: list[str] = []
