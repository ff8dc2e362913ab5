"""
Reads a GTFS static feed (zip archive) into typed rows and stores it.

Feed contents used:
  calendar.txt       → ServiceCalendar
  calendar_dates.txt → CalendarException
  trips.txt          → Trip
  routes.txt         → Route

Every table is optional except that at least one of calendar.txt /
calendar_dates.txt must be present.  A missing table becomes an empty
collection.  No semantic validation happens here: duplicate ids and
dangling references pass through untouched.
"""

import io
import logging
import zipfile
from typing import Callable

import httpx
import pandas as pd
from sqlalchemy.orm import Session

from config import DATA_DIR, GTFS_STATIC_URL
from db import models
from feed.entities import (
    CalendarException, ExceptionType, GtfsDataset, Route, ServiceCalendar, Trip,
)

logger = logging.getLogger(__name__)

GTFS_ZIP_PATH = DATA_DIR / "gtfs_static.zip"

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


async def download_gtfs_zip(url: str = GTFS_STATIC_URL) -> bytes:
    """Download GTFS zip from the given URL and cache it to disk."""
    if not url:
        raise ValueError("GTFS_STATIC_URL is not configured. Set it in your .env file.")
    logger.info("Downloading GTFS static feed from %s", url)
    async with httpx.AsyncClient(timeout=60) as client:
        response = await client.get(url, follow_redirects=True)
        response.raise_for_status()
    GTFS_ZIP_PATH.write_bytes(response.content)
    logger.info("Saved GTFS zip to %s (%d bytes)", GTFS_ZIP_PATH, len(response.content))
    return response.content


def _open_zip(zip_bytes: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(zip_bytes))
    except zipfile.BadZipFile as exc:
        raise ValueError(f"Not a valid GTFS zip archive: {exc}") from exc


def list_feed_files(zip_bytes: bytes) -> list[str]:
    """Return the names of all non-directory members of a GTFS zip."""
    with _open_zip(zip_bytes) as zf:
        return [info.filename for info in zf.infolist() if not info.is_dir()]


def parse_feed(zip_bytes: bytes) -> GtfsDataset:
    """
    Extract a GTFS zip into an immutable GtfsDataset.

    Raises:
        ValueError: If the payload is not a zip archive, or contains
                    neither calendar.txt nor calendar_dates.txt.
    """
    with _open_zip(zip_bytes) as zf:
        names = set(zf.namelist())
        logger.info("GTFS zip contains: %s", sorted(names))

        if "calendar.txt" not in names and "calendar_dates.txt" not in names:
            raise ValueError("GTFS file must contain calendar.txt or calendar_dates.txt")

        def read(filename: str, parse_row: Callable[[pd.Series], object]) -> tuple:
            if filename not in names:
                logger.info("%s not present; treating as empty.", filename)
                return ()
            with zf.open(filename) as f:
                df = _read_table(f)
            rows = []
            for _, row in df.iterrows():
                parsed = parse_row(row)
                if parsed is not None:
                    rows.append(parsed)
            skipped = len(df) - len(rows)
            if skipped:
                logger.warning("Skipped %d unparseable rows in %s.", skipped, filename)
            logger.info("Loaded %d rows from %s.", len(rows), filename)
            return tuple(rows)

        return GtfsDataset(
            calendars=read("calendar.txt", _parse_calendar_row),
            calendar_dates=read("calendar_dates.txt", _parse_calendar_date_row),
            trips=read("trips.txt", _parse_trip_row),
            routes=read("routes.txt", _parse_route_row),
        )


def _read_table(f) -> pd.DataFrame:
    try:
        df = pd.read_csv(
            f, dtype=str, keep_default_na=False, index_col=False, encoding="utf-8-sig",
        ).fillna("")
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except pd.errors.ParserError as exc:
        raise ValueError(f"Malformed GTFS table: {exc}") from exc
    df.columns = [str(c).strip() for c in df.columns]
    for col in df.columns:
        df[col] = df[col].str.strip()
    return df


def _optional_str(value: str | None) -> str | None:
    return value if value else None


def _optional_int(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_calendar_row(row: pd.Series) -> ServiceCalendar:
    return ServiceCalendar(
        service_id=row.get("service_id", ""),
        start_date=row.get("start_date", ""),
        end_date=row.get("end_date", ""),
        **{day: row.get(day, "") == "1" for day in _WEEKDAYS},
    )


def _parse_calendar_date_row(row: pd.Series) -> CalendarException | None:
    try:
        exception_type = ExceptionType(int(row.get("exception_type", "")))
    except ValueError:
        return None
    return CalendarException(
        service_id=row.get("service_id", ""),
        date=row.get("date", ""),
        exception_type=exception_type,
    )


def _parse_trip_row(row: pd.Series) -> Trip:
    return Trip(
        trip_id=row.get("trip_id", ""),
        route_id=row.get("route_id", ""),
        service_id=row.get("service_id", ""),
        trip_headsign=_optional_str(row.get("trip_headsign")),
        trip_short_name=_optional_str(row.get("trip_short_name")),
        direction_id=_optional_int(row.get("direction_id")),
        block_id=_optional_str(row.get("block_id")),
        shape_id=_optional_str(row.get("shape_id")),
        wheelchair_accessible=_optional_int(row.get("wheelchair_accessible")),
        bikes_allowed=_optional_int(row.get("bikes_allowed")),
    )


def _parse_route_row(row: pd.Series) -> Route:
    return Route(
        route_id=row.get("route_id", ""),
        agency_id=_optional_str(row.get("agency_id")),
        route_short_name=_optional_str(row.get("route_short_name")),
        route_long_name=_optional_str(row.get("route_long_name")),
        route_desc=_optional_str(row.get("route_desc")),
        route_type=_optional_int(row.get("route_type")),
        route_url=_optional_str(row.get("route_url")),
        route_color=_optional_str(row.get("route_color")),
        route_text_color=_optional_str(row.get("route_text_color")),
        route_sort_order=_optional_int(row.get("route_sort_order")),
    )


# ---------------------------------------------------------------------------
# Database round trip
# ---------------------------------------------------------------------------

def store_dataset(dataset: GtfsDataset, session: Session) -> None:
    """
    Replace the stored feed with the given dataset.
    Clears all four tables before inserting; rows keep feed order.
    """
    session.query(models.ServiceCalendarDate).delete()
    session.query(models.ServiceCalendar).delete()
    session.query(models.Trip).delete()
    session.query(models.Route).delete()
    session.flush()

    session.add_all(
        models.ServiceCalendar(
            service_id=c.service_id,
            monday=c.monday,
            tuesday=c.tuesday,
            wednesday=c.wednesday,
            thursday=c.thursday,
            friday=c.friday,
            saturday=c.saturday,
            sunday=c.sunday,
            start_date=c.start_date,
            end_date=c.end_date,
        )
        for c in dataset.calendars
    )
    session.add_all(
        models.ServiceCalendarDate(
            service_id=cd.service_id,
            date=cd.date,
            exception_type=int(cd.exception_type),
        )
        for cd in dataset.calendar_dates
    )
    session.add_all(
        models.Trip(
            trip_id=t.trip_id,
            route_id=t.route_id,
            service_id=t.service_id,
            trip_headsign=t.trip_headsign,
            trip_short_name=t.trip_short_name,
            direction_id=t.direction_id,
            block_id=t.block_id,
            shape_id=t.shape_id,
            wheelchair_accessible=t.wheelchair_accessible,
            bikes_allowed=t.bikes_allowed,
        )
        for t in dataset.trips
    )
    session.add_all(
        models.Route(
            route_id=r.route_id,
            agency_id=r.agency_id,
            route_short_name=r.route_short_name,
            route_long_name=r.route_long_name,
            route_desc=r.route_desc,
            route_type=r.route_type,
            route_url=r.route_url,
            route_color=r.route_color,
            route_text_color=r.route_text_color,
            route_sort_order=r.route_sort_order,
        )
        for r in dataset.routes
    )
    session.commit()
    logger.info(
        "GTFS feed committed to database: %d calendars, %d exceptions, %d trips, %d routes.",
        len(dataset.calendars),
        len(dataset.calendar_dates),
        len(dataset.trips),
        len(dataset.routes),
    )


def load_dataset(session: Session) -> GtfsDataset:
    """Read the stored feed back into an immutable dataset, in feed order."""
    calendars = tuple(
        ServiceCalendar(
            service_id=c.service_id,
            monday=bool(c.monday),
            tuesday=bool(c.tuesday),
            wednesday=bool(c.wednesday),
            thursday=bool(c.thursday),
            friday=bool(c.friday),
            saturday=bool(c.saturday),
            sunday=bool(c.sunday),
            start_date=c.start_date or "",
            end_date=c.end_date or "",
        )
        for c in session.query(models.ServiceCalendar).order_by(models.ServiceCalendar.id)
    )

    calendar_dates = []
    skipped = 0
    for cd in session.query(models.ServiceCalendarDate).order_by(models.ServiceCalendarDate.id):
        try:
            exception_type = ExceptionType(cd.exception_type)
        except ValueError:
            skipped += 1
            continue
        calendar_dates.append(CalendarException(
            service_id=cd.service_id or "",
            date=cd.date or "",
            exception_type=exception_type,
        ))
    if skipped:
        logger.warning("Skipped %d stored calendar dates with unknown exception_type.", skipped)

    trips = tuple(
        Trip(
            trip_id=t.trip_id,
            route_id=t.route_id or "",
            service_id=t.service_id or "",
            trip_headsign=t.trip_headsign,
            trip_short_name=t.trip_short_name,
            direction_id=t.direction_id,
            block_id=t.block_id,
            shape_id=t.shape_id,
            wheelchair_accessible=t.wheelchair_accessible,
            bikes_allowed=t.bikes_allowed,
        )
        for t in session.query(models.Trip).order_by(models.Trip.id)
    )
    routes = tuple(
        Route(
            route_id=r.route_id,
            agency_id=r.agency_id,
            route_short_name=r.route_short_name,
            route_long_name=r.route_long_name,
            route_desc=r.route_desc,
            route_type=r.route_type,
            route_url=r.route_url,
            route_color=r.route_color,
            route_text_color=r.route_text_color,
            route_sort_order=r.route_sort_order,
        )
        for r in session.query(models.Route).order_by(models.Route.id)
    )
    return GtfsDataset(
        calendars=calendars,
        calendar_dates=tuple(calendar_dates),
        trips=trips,
        routes=routes,
    )


async def refresh_static_data(session: Session) -> GtfsDataset:
    """Download, parse and store a fresh copy of the GTFS static feed."""
    zip_bytes = await download_gtfs_zip()
    dataset = parse_feed(zip_bytes)
    store_dataset(dataset, session)
    return dataset
