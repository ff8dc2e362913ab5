"""
Projects a resolved service set onto the trip catalog.
"""

import logging
from datetime import date
from typing import Collection, Sequence

from feed.entities import GtfsDataset, Route, Trip, TripWithRoute
from service_calendar.resolver import active_service_ids

logger = logging.getLogger(__name__)


def project(
    active_ids: Collection[str],
    trips: Sequence[Trip],
    routes: Sequence[Route],
) -> list[TripWithRoute]:
    """
    Return the trips whose service_id is in active_ids, in trip order,
    each paired with its route (None when no route shares the route_id).

    If routes.txt repeats a route_id, the last row wins.
    """
    route_by_id = {route.route_id: route for route in routes}
    return [
        TripWithRoute(trip=trip, route=route_by_id.get(trip.route_id))
        for trip in trips
        if trip.service_id in active_ids
    ]


def trips_for_date(dataset: GtfsDataset, service_date: date) -> list[TripWithRoute]:
    """Trips running on service_date after calendar exceptions are applied."""
    active_ids = active_service_ids(dataset.calendars, dataset.calendar_dates, service_date)
    running = project(active_ids, dataset.trips, dataset.routes)
    logger.debug(
        "%d of %d trips run on %s (%d active services).",
        len(running), len(dataset.trips), service_date, len(active_ids),
    )
    return running
