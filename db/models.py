"""
SQLAlchemy ORM models for the stored GTFS feed.

Every table uses an autoincrement surrogate key instead of the GTFS id.
GTFS declares trip_id and calendar service_id unique, but real feeds break
that; the rows are stored exactly as ingested so the uniqueness validator
can report the violations.  The surrogate key also preserves feed order.

GTFS dates (start_date, end_date, date) are stored as YYYYMMDD strings.
"""

from sqlalchemy import (
    Boolean, Column, Integer, String
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Route(Base):
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(String, index=True, nullable=False)
    agency_id = Column(String, nullable=True)
    route_short_name = Column(String, nullable=True)
    route_long_name = Column(String, nullable=True)
    route_desc = Column(String, nullable=True)
    route_type = Column(Integer, nullable=True)  # 3 = bus
    route_url = Column(String, nullable=True)
    route_color = Column(String, nullable=True)
    route_text_color = Column(String, nullable=True)
    route_sort_order = Column(Integer, nullable=True)


class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String, index=True, nullable=False)
    route_id = Column(String, index=True)
    service_id = Column(String, index=True)
    trip_headsign = Column(String, nullable=True)
    trip_short_name = Column(String, nullable=True)
    direction_id = Column(Integer, nullable=True)
    block_id = Column(String, nullable=True)
    shape_id = Column(String, nullable=True)
    wheelchair_accessible = Column(Integer, nullable=True)
    bikes_allowed = Column(Integer, nullable=True)


class ServiceCalendar(Base):
    __tablename__ = "service_calendar"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(String, index=True, nullable=False)
    monday = Column(Boolean)
    tuesday = Column(Boolean)
    wednesday = Column(Boolean)
    thursday = Column(Boolean)
    friday = Column(Boolean)
    saturday = Column(Boolean)
    sunday = Column(Boolean)
    start_date = Column(String)  # YYYYMMDD
    end_date = Column(String)    # YYYYMMDD


class ServiceCalendarDate(Base):
    __tablename__ = "service_calendar_dates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(String, index=True)
    date = Column(String, index=True)  # YYYYMMDD
    exception_type = Column(Integer)   # 1 = service added, 2 = service removed
