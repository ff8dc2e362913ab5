"""
FastAPI application entry point.

On startup:
  1. Initialise the database schema.
  2. Load the stored GTFS feed into the in-memory snapshot (if any).
  3. Start the APScheduler with a GTFS static refresh every
     GTFS_REFRESH_HOURS (only when GTFS_STATIC_URL is set).

Endpoints (v1):
  GET  /health
  GET  /stats
  GET  /date-range
  GET  /dates?today=<YYYYMMDD>
  GET  /days/<YYYYMMDD>
  GET  /days/<YYYYMMDD>/base
  GET  /days/<YYYYMMDD>/trips?route_id=<route_id>
  GET  /validation
  POST /ingest/gtfs-static
  POST /ingest/upload
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Depends, FastAPI, File, HTTPException, Path, Query, Security, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from api.schemas import (
    AvailableDatesResponse,
    BaseCalendarsResponse,
    DateRangeResponse,
    DayResponse,
    HealthResponse,
    IngestResponse,
    StatsResponse,
    TripsResponse,
    ValidationResponse,
)
from config import CORS_ORIGINS, GTFS_REFRESH_HOURS, GTFS_STATIC_URL, INGEST_API_KEY, MAX_UPLOAD_MB
from db.session import SessionLocal, get_session, init_db
from feed.dates import format_gtfs_date, parse_gtfs_date
from feed.entities import (
    ExceptionType, GtfsDataset, Route, ServiceStatus, TripWithRoute,
)
from feed.snapshot import get_dataset, get_loaded_at, load_snapshot, set_dataset
from ingestion.gtfs_static import list_feed_files, parse_feed, refresh_static_data, store_dataset
from service_calendar.day import resolve_day
from service_calendar.projector import trips_for_date
from service_calendar.resolver import resolve_base
from service_calendar.summary import available_dates, date_range, service_stats
from validation.uniqueness import validate

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_ingest_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _require_ingest_key(key: str | None = Security(_ingest_key_header)) -> None:
    """
    Optional API-key guard for the ingest endpoints.

    If INGEST_API_KEY is not set the endpoints are open (local dev / testing).
    If it is set, the request must include the matching X-API-Key header.
    """
    if not INGEST_API_KEY:
        return  # no key configured → open
    if key != INGEST_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid or missing X-API-Key header.")


def _require_dataset() -> GtfsDataset:
    """Dependency: the current feed snapshot, or 409 if none is loaded."""
    try:
        return get_dataset()
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


def _parse_date_param(value: str) -> date:
    parsed = parse_gtfs_date(value)
    if parsed is None:
        raise HTTPException(
            status_code=422, detail=f"Invalid date '{value}': expected YYYYMMDD."
        )
    return parsed


scheduler = AsyncIOScheduler()


async def _scheduled_gtfs_refresh() -> None:
    """
    Scheduled job: download the GTFS static feed, store it, and swap the
    in-memory snapshot.

    Opens its own DB session because APScheduler jobs run outside
    FastAPI's DI system.  Exceptions are caught and logged so a transient
    network failure cannot crash the scheduler process; the previous
    snapshot stays in place.
    """
    logger.info("Scheduled GTFS static refresh starting.")
    db = SessionLocal()
    try:
        dataset = await refresh_static_data(db)
        set_dataset(dataset)
        logger.info("Scheduled GTFS static refresh complete.")
    except Exception as exc:
        logger.error("Scheduled GTFS static refresh failed: %s", exc, exc_info=True)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    logger.info("Database initialised.")

    db = SessionLocal()
    try:
        load_snapshot(db)
    except Exception as exc:
        logger.warning("Could not load feed snapshot on startup: %s", exc)
    finally:
        db.close()

    if GTFS_STATIC_URL:
        scheduler.add_job(
            _scheduled_gtfs_refresh,
            "interval",
            hours=GTFS_REFRESH_HOURS,
            id="gtfs_static_refresh",
        )
        scheduler.start()
        logger.info("Scheduler started. GTFS refresh every %dh.", GTFS_REFRESH_HOURS)
    else:
        logger.info("Scheduled GTFS refresh disabled: GTFS_STATIC_URL not set.")

    yield

    # Shutdown
    if scheduler.running:
        scheduler.shutdown()


app = FastAPI(
    title="GTFS Calendar Explorer",
    description="Which services and trips run on a given day, and is the feed consistent?",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

_EXCEPTION_LABELS = {ExceptionType.ADDED: "added", ExceptionType.REMOVED: "removed"}


def _status_payload(status: ServiceStatus) -> dict[str, Any]:
    calendar = status.calendar
    return {
        "service_id": status.service_id,
        "is_active": status.is_active,
        "is_exception": status.is_exception,
        "exception_type": _EXCEPTION_LABELS.get(status.exception_type),
        "calendar": None if calendar is None else {
            "service_id": calendar.service_id,
            "monday": calendar.monday,
            "tuesday": calendar.tuesday,
            "wednesday": calendar.wednesday,
            "thursday": calendar.thursday,
            "friday": calendar.friday,
            "saturday": calendar.saturday,
            "sunday": calendar.sunday,
            "start_date": calendar.start_date,
            "end_date": calendar.end_date,
        },
    }


def _route_payload(route: Route | None) -> dict[str, Any] | None:
    if route is None:
        return None
    return {
        "route_id": route.route_id,
        "agency_id": route.agency_id,
        "route_short_name": route.route_short_name,
        "route_long_name": route.route_long_name,
        "route_desc": route.route_desc,
        "route_type": route.route_type,
        "route_url": route.route_url,
        "route_color": route.route_color,
        "route_text_color": route.route_text_color,
        "route_sort_order": route.route_sort_order,
    }


def _trip_payload(item: TripWithRoute) -> dict[str, Any]:
    trip = item.trip
    return {
        "trip_id": trip.trip_id,
        "route_id": trip.route_id,
        "service_id": trip.service_id,
        "trip_headsign": trip.trip_headsign,
        "trip_short_name": trip.trip_short_name,
        "direction_id": trip.direction_id,
        "block_id": trip.block_id,
        "shape_id": trip.shape_id,
        "wheelchair_accessible": trip.wheelchair_accessible,
        "bikes_allowed": trip.bikes_allowed,
        "route": _route_payload(item.route),
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Liveness + data-freshness check.

    Reports snapshot row counts and timestamps so operators can quickly
    tell whether a feed has been loaded.
    """
    snapshot_loaded = False
    counts = {"calendars": 0, "exceptions": 0, "trips": 0, "routes": 0}
    try:
        dataset = get_dataset()
        snapshot_loaded = True
        counts = {
            "calendars": len(dataset.calendars),
            "exceptions": len(dataset.calendar_dates),
            "trips": len(dataset.trips),
            "routes": len(dataset.routes),
        }
    except RuntimeError:
        pass

    loaded_at = get_loaded_at()

    next_refresh_at: str | None = None
    refresh_job = scheduler.get_job("gtfs_static_refresh")
    if refresh_job and refresh_job.next_run_time:
        next_refresh_at = refresh_job.next_run_time.isoformat()

    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "feed": {
            **counts,
            "snapshot_loaded": snapshot_loaded,
            "loaded_at": loaded_at.isoformat() if loaded_at else None,
            "next_refresh_at": next_refresh_at,
        },
    }


@app.get("/stats", response_model=StatsResponse)
async def get_stats(dataset: GtfsDataset = Depends(_require_dataset)) -> StatsResponse:
    """Row counts and the number of distinct service_ids in the feed."""
    stats = service_stats(dataset)
    return {
        "total_calendars": stats.total_calendars,
        "total_exceptions": stats.total_exceptions,
        "total_trips": stats.total_trips,
        "total_routes": stats.total_routes,
        "unique_service_ids": stats.unique_service_ids,
    }


@app.get("/date-range", response_model=DateRangeResponse)
async def get_date_range(dataset: GtfsDataset = Depends(_require_dataset)) -> DateRangeResponse:
    window = date_range(dataset)
    if window is None:
        return {"start": None, "end": None}
    return {"start": format_gtfs_date(window.start), "end": format_gtfs_date(window.end)}


@app.get("/dates", response_model=AvailableDatesResponse)
async def get_available_dates(
    today: str | None = Query(
        None, description="Anchor date as YYYYMMDD. Defaults to the server's local date."
    ),
    dataset: GtfsDataset = Depends(_require_dataset),
) -> AvailableDatesResponse:
    """Every date from today (or the feed start, if later) through the feed end."""
    anchor = _parse_date_param(today) if today else date.today()
    dates = available_dates(dataset, anchor)
    return {
        "today": format_gtfs_date(anchor),
        "count": len(dates),
        "dates": [format_gtfs_date(d) for d in dates],
    }


@app.get("/days/{service_date}", response_model=DayResponse)
async def get_day(
    service_date: str = Path(..., description="Service date as YYYYMMDD"),
    dataset: GtfsDataset = Depends(_require_dataset),
) -> DayResponse:
    """Base calendars, active and excluded services, and running trips for one date."""
    day = resolve_day(dataset, _parse_date_param(service_date))
    return {
        "date": day.date.isoformat(),
        "date_string": day.date_string,
        "base_calendars": [_status_payload(s) for s in day.base_calendars],
        "active_calendars": [_status_payload(s) for s in day.active_calendars],
        "excluded_calendars": [_status_payload(s) for s in day.excluded_calendars],
        "active_trips": [_trip_payload(t) for t in day.active_trips],
    }


@app.get("/days/{service_date}/base", response_model=BaseCalendarsResponse)
async def get_day_base(
    service_date: str = Path(..., description="Service date as YYYYMMDD"),
    dataset: GtfsDataset = Depends(_require_dataset),
) -> BaseCalendarsResponse:
    """Calendars matching by their regular weekly rule only, ignoring exceptions."""
    parsed = _parse_date_param(service_date)
    return {
        "date_string": format_gtfs_date(parsed),
        "base_calendars": [_status_payload(s) for s in resolve_base(dataset.calendars, parsed)],
    }


@app.get("/days/{service_date}/trips", response_model=TripsResponse)
async def get_day_trips(
    service_date: str = Path(..., description="Service date as YYYYMMDD"),
    route_id: str | None = Query(None, description="Only trips on this route"),
    dataset: GtfsDataset = Depends(_require_dataset),
) -> TripsResponse:
    parsed = _parse_date_param(service_date)
    running = trips_for_date(dataset, parsed)
    if route_id is not None:
        running = [t for t in running if t.trip.route_id == route_id]
    return {
        "date_string": format_gtfs_date(parsed),
        "trip_count": len(running),
        "trips": [_trip_payload(t) for t in running],
    }


@app.get("/validation", response_model=ValidationResponse)
async def get_validation(dataset: GtfsDataset = Depends(_require_dataset)) -> ValidationResponse:
    """Duplicate-key report for trips.txt, calendar.txt and calendar_dates.txt."""
    result = validate(dataset)
    return {
        "is_valid": result.is_valid,
        "issues": [
            {
                "type": issue.type,
                "file": issue.file,
                "field": issue.field,
                "message": issue.message,
                "duplicates": issue.duplicates,
            }
            for issue in result.issues
        ],
        "stats": {
            "trips_checked": result.stats.trips_checked,
            "calendars_checked": result.stats.calendars_checked,
            "calendar_dates_checked": result.stats.calendar_dates_checked,
        },
    }


@app.post("/ingest/gtfs-static", response_model=IngestResponse)
async def trigger_gtfs_ingest(
    session: Session = Depends(get_session),
    _: None = Depends(_require_ingest_key),
) -> IngestResponse:
    """
    Manually trigger a GTFS static download from GTFS_STATIC_URL and swap
    the snapshot.  (When the URL is set this also runs on a schedule.)
    """
    try:
        dataset = await refresh_static_data(session)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    set_dataset(dataset)
    return {
        "status": "ok",
        "message": (
            f"GTFS static feed refreshed: {len(dataset.calendars)} calendars, "
            f"{len(dataset.calendar_dates)} exceptions, {len(dataset.trips)} trips."
        ),
    }


@app.post("/ingest/upload", response_model=IngestResponse)
async def upload_gtfs_feed(
    file: UploadFile = File(..., description="GTFS zip archive"),
    session: Session = Depends(get_session),
    _: None = Depends(_require_ingest_key),
) -> IngestResponse:
    """
    Load a GTFS zip uploaded by the client, replacing the stored feed.

    The archive must contain calendar.txt or calendar_dates.txt; trips.txt
    and routes.txt are optional.
    """
    zip_bytes = await file.read()
    if len(zip_bytes) > MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"Upload exceeds {MAX_UPLOAD_MB} MB.")
    try:
        files = list_feed_files(zip_bytes)
        dataset = parse_feed(zip_bytes)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    store_dataset(dataset, session)
    set_dataset(dataset)
    logger.info("Uploaded feed %s loaded (%d members).", file.filename, len(files))
    return {
        "status": "ok",
        "message": (
            f"Loaded {file.filename}: {len(dataset.calendars)} calendars, "
            f"{len(dataset.calendar_dates)} exceptions, {len(dataset.trips)} trips, "
            f"{len(dataset.routes)} routes."
        ),
        "files": files,
    }
