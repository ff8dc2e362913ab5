"""
Integration tests for API endpoints.

The FastAPI lifespan (init_db, load_snapshot, scheduler) is patched out
for every test.  Each test gets its own in-memory SQLite database via
the db_session / client fixtures, and the feed snapshot is cleared
between tests, so tests are fully isolated.
"""

import io
import zipfile
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import models
from db.models import Base
from db.session import get_session
from feed.entities import (
    CalendarException, ExceptionType, GtfsDataset, Route, ServiceCalendar, Trip,
)
from feed.snapshot import clear_snapshot, get_dataset, set_dataset


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database, schema pre-created, per test.

    StaticPool is required so that create_all and the session both use
    the same single connection; otherwise each pool checkout gets a new
    in-memory DB that has no tables.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def client(db_session):
    """
    TestClient with:
      - lifespan init_db / load_snapshot patched to no-ops
      - get_session dependency overridden to use the test db_session
      - an empty feed snapshot before and after each test
    """
    from api.main import app

    def override_get_session():
        yield db_session

    clear_snapshot()
    with (
        patch("api.main.init_db"),
        patch("api.main.load_snapshot"),
        patch("api.main.SessionLocal", return_value=MagicMock()),
    ):
        app.dependency_overrides[get_session] = override_get_session
        with TestClient(app, raise_server_exceptions=True) as c:
            yield c
        app.dependency_overrides.clear()
    clear_snapshot()


_WD = ServiceCalendar(
    service_id="WD",
    monday=True, tuesday=True, wednesday=True, thursday=True, friday=True,
    start_date="20240101", end_date="20241231",
)

_DATASET = GtfsDataset(
    calendars=(_WD,),
    calendar_dates=(
        CalendarException(service_id="WD", date="20240704", exception_type=ExceptionType.REMOVED),
        CalendarException(service_id="HOLIDAY", date="20240704", exception_type=ExceptionType.ADDED),
    ),
    trips=(
        Trip(trip_id="T1", route_id="R1", service_id="WD", trip_headsign="Downtown"),
        Trip(trip_id="T2", route_id="R2", service_id="HOLIDAY"),
        Trip(trip_id="T3", route_id="R2", service_id="WD"),
    ),
    routes=(
        Route(route_id="R1", route_short_name="1", route_type=3),
        Route(route_id="R2", route_short_name="2", route_type=3),
    ),
)


@pytest.fixture
def loaded(client):
    """Client with _DATASET installed as the current snapshot."""
    set_dataset(_DATASET)
    return client


def _feed_zip(members: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, text in members.items():
            zf.writestr(name, text)
    return buf.getvalue()


_UPLOAD_FEED = {
    "calendar.txt": (
        "service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date\n"
        "WD,1,1,1,1,1,0,0,20240101,20241231\n"
    ),
    "calendar_dates.txt": "service_id,date,exception_type\nWD,20240704,2\n",
    "trips.txt": "route_id,service_id,trip_id\nR1,WD,T1\n",
    "routes.txt": "route_id,route_short_name,route_type\nR1,1,3\n",
}


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class TestHealth:
    def test_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_contains_status_ok(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert "timestamp" in body

    def test_no_feed_loaded(self, client):
        feed = client.get("/health").json()["feed"]
        assert feed["snapshot_loaded"] is False
        assert feed["trips"] == 0
        assert feed["loaded_at"] is None
        assert feed["next_refresh_at"] is None

    def test_feed_loaded_counts(self, loaded):
        feed = loaded.get("/health").json()["feed"]
        assert feed["snapshot_loaded"] is True
        assert feed["calendars"] == 1
        assert feed["exceptions"] == 2
        assert feed["trips"] == 3
        assert feed["routes"] == 2
        assert feed["loaded_at"] is not None


# ---------------------------------------------------------------------------
# No feed loaded
# ---------------------------------------------------------------------------

class TestNoFeedLoaded:
    @pytest.mark.parametrize("path", [
        "/stats", "/date-range", "/dates", "/days/20240704",
        "/days/20240704/base", "/days/20240704/trips", "/validation",
    ])
    def test_query_endpoints_return_409(self, client, path):
        resp = client.get(path)
        assert resp.status_code == 409
        assert "No GTFS feed" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# GET /stats, /date-range, /dates
# ---------------------------------------------------------------------------

class TestSummaryEndpoints:
    def test_stats(self, loaded):
        assert loaded.get("/stats").json() == {
            "total_calendars": 1,
            "total_exceptions": 2,
            "total_trips": 3,
            "total_routes": 2,
            "unique_service_ids": 2,
        }

    def test_date_range(self, loaded):
        assert loaded.get("/date-range").json() == {"start": "20240101", "end": "20241231"}

    def test_date_range_empty_feed(self, client):
        set_dataset(GtfsDataset())
        assert client.get("/date-range").json() == {"start": None, "end": None}

    def test_dates_from_explicit_today(self, loaded):
        body = loaded.get("/dates?today=20241229").json()
        assert body["today"] == "20241229"
        assert body["dates"] == ["20241229", "20241230", "20241231"]
        assert body["count"] == 3

    def test_dates_past_feed_end(self, loaded):
        body = loaded.get("/dates?today=20250101").json()
        assert body["dates"] == []
        assert body["count"] == 0

    def test_dates_invalid_today_returns_422(self, loaded):
        assert loaded.get("/dates?today=2024-12-29").status_code == 422


# ---------------------------------------------------------------------------
# GET /days/{date}
# ---------------------------------------------------------------------------

class TestDay:
    def test_holiday(self, loaded):
        body = loaded.get("/days/20240704").json()
        assert body["date"] == "2024-07-04"
        assert body["date_string"] == "20240704"
        assert [s["service_id"] for s in body["base_calendars"]] == ["WD"]

        excluded = body["excluded_calendars"]
        assert len(excluded) == 1
        assert excluded[0]["service_id"] == "WD"
        assert excluded[0]["exception_type"] == "removed"
        assert excluded[0]["is_active"] is False
        assert excluded[0]["calendar"]["monday"] is True

        active = body["active_calendars"]
        assert len(active) == 1
        assert active[0]["service_id"] == "HOLIDAY"
        assert active[0]["exception_type"] == "added"
        assert active[0]["calendar"] is None

        assert [t["trip_id"] for t in body["active_trips"]] == ["T2"]

    def test_regular_weekday(self, loaded):
        body = loaded.get("/days/20240703").json()
        assert body["excluded_calendars"] == []
        assert body["active_calendars"][0]["is_exception"] is False
        assert body["active_calendars"][0]["exception_type"] is None
        trips = body["active_trips"]
        assert [t["trip_id"] for t in trips] == ["T1", "T3"]
        assert trips[0]["route"]["route_short_name"] == "1"
        assert trips[0]["trip_headsign"] == "Downtown"

    def test_weekend_is_empty(self, loaded):
        body = loaded.get("/days/20240706").json()
        assert body["active_calendars"] == []
        assert body["excluded_calendars"] == []
        assert body["active_trips"] == []

    def test_invalid_date_returns_422(self, loaded):
        resp = loaded.get("/days/2024-07-04")
        assert resp.status_code == 422

    def test_impossible_date_returns_422(self, loaded):
        assert loaded.get("/days/20240230").status_code == 422

    def test_base_ignores_exceptions(self, loaded):
        body = loaded.get("/days/20240704/base").json()
        assert body["date_string"] == "20240704"
        assert [s["service_id"] for s in body["base_calendars"]] == ["WD"]
        assert body["base_calendars"][0]["is_exception"] is False

    def test_trips(self, loaded):
        body = loaded.get("/days/20240703/trips").json()
        assert body["trip_count"] == 2
        assert [t["trip_id"] for t in body["trips"]] == ["T1", "T3"]

    def test_trips_filtered_by_route(self, loaded):
        body = loaded.get("/days/20240703/trips?route_id=R2").json()
        assert body["trip_count"] == 1
        assert body["trips"][0]["trip_id"] == "T3"
        assert body["trips"][0]["route"]["route_short_name"] == "2"


# ---------------------------------------------------------------------------
# GET /validation
# ---------------------------------------------------------------------------

class TestValidation:
    def test_clean_feed(self, loaded):
        body = loaded.get("/validation").json()
        assert body["is_valid"] is True
        assert body["issues"] == []
        assert body["stats"] == {
            "trips_checked": 3,
            "calendars_checked": 1,
            "calendar_dates_checked": 2,
        }

    def test_duplicate_calendar(self, client):
        set_dataset(GtfsDataset(calendars=(_WD, _WD)))
        body = client.get("/validation").json()
        assert body["is_valid"] is False
        assert body["issues"] == [{
            "type": "error",
            "file": "calendar.txt",
            "field": "service_id",
            "message": "Found 1 duplicate service_id value(s)",
            "duplicates": ["WD"],
        }]

    def test_duplicate_calendar_still_resolves_twice(self, client):
        set_dataset(GtfsDataset(calendars=(_WD, _WD)))
        body = client.get("/days/20240703").json()
        assert [s["service_id"] for s in body["active_calendars"]] == ["WD", "WD"]


# ---------------------------------------------------------------------------
# POST /ingest/upload
# ---------------------------------------------------------------------------

class TestUpload:
    def test_upload_loads_snapshot_and_stores(self, client, db_session):
        resp = client.post(
            "/ingest/upload",
            files={"file": ("feed.zip", _feed_zip(_UPLOAD_FEED), "application/zip")},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert sorted(body["files"]) == sorted(_UPLOAD_FEED)
        assert "feed.zip" in body["message"]

        dataset = get_dataset()
        assert [t.trip_id for t in dataset.trips] == ["T1"]
        assert db_session.query(models.ServiceCalendar).count() == 1
        assert db_session.query(models.ServiceCalendarDate).count() == 1

        day = client.get("/days/20240704").json()
        assert day["excluded_calendars"][0]["service_id"] == "WD"

    def test_upload_without_calendar_tables_returns_422(self, client):
        resp = client.post(
            "/ingest/upload",
            files={"file": ("feed.zip", _feed_zip({"trips.txt": "trip_id\nT1\n"}), "application/zip")},
        )
        assert resp.status_code == 422
        assert "calendar.txt" in resp.json()["detail"]

    def test_upload_not_a_zip_returns_422(self, client):
        resp = client.post(
            "/ingest/upload",
            files={"file": ("feed.zip", b"not a zip", "application/zip")},
        )
        assert resp.status_code == 422

    def test_upload_too_large_returns_413(self, client):
        with patch("api.main.MAX_UPLOAD_MB", 0):
            resp = client.post(
                "/ingest/upload",
                files={"file": ("feed.zip", _feed_zip(_UPLOAD_FEED), "application/zip")},
            )
        assert resp.status_code == 413

    def test_upload_requires_key_when_configured(self, client):
        with patch("api.main.INGEST_API_KEY", "secret"):
            resp = client.post(
                "/ingest/upload",
                files={"file": ("feed.zip", _feed_zip(_UPLOAD_FEED), "application/zip")},
            )
        assert resp.status_code == 401

    def test_upload_accepts_matching_key(self, client):
        with patch("api.main.INGEST_API_KEY", "secret"):
            resp = client.post(
                "/ingest/upload",
                headers={"X-API-Key": "secret"},
                files={"file": ("feed.zip", _feed_zip(_UPLOAD_FEED), "application/zip")},
            )
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# POST /ingest/gtfs-static
# ---------------------------------------------------------------------------

class TestIngestStatic:
    def test_refresh_swaps_snapshot(self, client):
        with (
            patch("api.main.INGEST_API_KEY", ""),
            patch("api.main.refresh_static_data", new_callable=AsyncMock,
                  return_value=_DATASET),
        ):
            resp = client.post("/ingest/gtfs-static")
        assert resp.status_code == 200
        assert "3 trips" in resp.json()["message"]
        assert get_dataset() is _DATASET

    def test_unconfigured_url_returns_400(self, client):
        with (
            patch("api.main.INGEST_API_KEY", ""),
            patch("api.main.refresh_static_data", new_callable=AsyncMock,
                  side_effect=ValueError("GTFS_STATIC_URL is not configured.")),
        ):
            resp = client.post("/ingest/gtfs-static")
        assert resp.status_code == 400
        assert "GTFS_STATIC_URL" in resp.json()["detail"]

    def test_requires_key_when_configured(self, client):
        with (
            patch("api.main.INGEST_API_KEY", "secret"),
            patch("api.main.refresh_static_data", new_callable=AsyncMock),
        ):
            resp = client.post("/ingest/gtfs-static")
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# _scheduled_gtfs_refresh job function
# ---------------------------------------------------------------------------

class TestScheduledRefreshJob:

    @pytest.mark.anyio
    async def test_refresh_and_swap(self):
        """Job downloads the feed and installs it as the snapshot."""
        from api.main import _scheduled_gtfs_refresh

        mock_session = MagicMock()
        with (
            patch("api.main.SessionLocal", return_value=mock_session),
            patch("api.main.refresh_static_data", new_callable=AsyncMock,
                  return_value=_DATASET) as mock_refresh,
            patch("api.main.set_dataset") as mock_set,
        ):
            await _scheduled_gtfs_refresh()

        mock_refresh.assert_called_once_with(mock_session)
        mock_set.assert_called_once_with(_DATASET)

    @pytest.mark.anyio
    async def test_error_does_not_propagate(self):
        """A failure during refresh is swallowed; the job must not crash the scheduler."""
        from api.main import _scheduled_gtfs_refresh

        with (
            patch("api.main.SessionLocal", return_value=MagicMock()),
            patch("api.main.refresh_static_data", new_callable=AsyncMock,
                  side_effect=Exception("network down")),
            patch("api.main.set_dataset") as mock_set,
        ):
            await _scheduled_gtfs_refresh()  # must not raise

        mock_set.assert_not_called()

    @pytest.mark.anyio
    async def test_session_always_closed(self):
        """DB session is closed in the finally block even when the job fails."""
        from api.main import _scheduled_gtfs_refresh

        mock_session = MagicMock()
        with (
            patch("api.main.SessionLocal", return_value=mock_session),
            patch("api.main.refresh_static_data", new_callable=AsyncMock,
                  side_effect=Exception("fail")),
        ):
            await _scheduled_gtfs_refresh()

        mock_session.close.assert_called_once()
