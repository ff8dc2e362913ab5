"""
Module-level cache of the currently loaded GTFS feed.

The dataset is loaded from the DB after each ingestion and cached in
memory.  Replacing it is a single reference swap, so request handlers
always see one consistent snapshot of all four tables; they never see
a half-loaded feed.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from feed.entities import GtfsDataset
from ingestion.gtfs_static import load_dataset

logger = logging.getLogger(__name__)

# Module-level cached dataset and load timestamp
_dataset: Optional[GtfsDataset] = None
_loaded_at: Optional[datetime] = None


def get_dataset() -> GtfsDataset:
    """Return the cached dataset. Raises if no feed has been loaded yet."""
    if _dataset is None:
        raise RuntimeError("No GTFS feed has been loaded yet. Ingest a feed first.")
    return _dataset


def get_loaded_at() -> Optional[datetime]:
    """Return the UTC timestamp of the last successful snapshot swap, or None."""
    return _loaded_at


def set_dataset(dataset: GtfsDataset) -> GtfsDataset:
    """Replace the cached snapshot with an already-built dataset."""
    global _dataset, _loaded_at
    _dataset = dataset
    _loaded_at = datetime.utcnow()
    logger.info(
        "Feed snapshot swapped: %d calendars, %d exceptions, %d trips, %d routes.",
        len(dataset.calendars),
        len(dataset.calendar_dates),
        len(dataset.trips),
        len(dataset.routes),
    )
    return dataset


def load_snapshot(session: Session) -> Optional[GtfsDataset]:
    """
    Read the stored feed from the database and cache it.
    Leaves the cache untouched and returns None if nothing is stored yet.
    """
    dataset = load_dataset(session)
    if not (dataset.calendars or dataset.calendar_dates or dataset.trips or dataset.routes):
        logger.warning("No stored GTFS feed found; snapshot not loaded.")
        return None
    return set_dataset(dataset)


def clear_snapshot() -> None:
    global _dataset, _loaded_at
    _dataset = None
    _loaded_at = None
