"""
Checks a loaded feed against the GTFS uniqueness constraints:

  trips.txt           trip_id            must be unique
  calendar.txt        service_id         must be unique
  calendar_dates.txt  service_id + date  must be unique

Violations are reported, never raised.  The resolver tolerates all three
(duplicate calendar rows are each evaluated; the first matching exception
wins), so a feed that fails validation still resolves deterministically.
"""

import logging
from collections import Counter
from typing import Hashable, Iterable, TypeVar

from feed.dates import format_gtfs_date, parse_gtfs_date
from feed.entities import GtfsDataset, ValidationIssue, ValidationResult, ValidationStats

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


def find_duplicates(values: Iterable[K]) -> list[K]:
    """Distinct values occurring more than once, in first-encounter order."""
    return [value for value, count in Counter(values).items() if count > 1]


def _normalise_date(value: str) -> str:
    parsed = parse_gtfs_date(value)
    return format_gtfs_date(parsed) if parsed is not None else value


def validate(dataset: GtfsDataset) -> ValidationResult:
    """Run all three uniqueness checks over the dataset."""
    issues: list[ValidationIssue] = []

    duplicate_trip_ids = find_duplicates(t.trip_id for t in dataset.trips)
    if duplicate_trip_ids:
        issues.append(ValidationIssue(
            file="trips.txt",
            field="trip_id",
            message=f"Found {len(duplicate_trip_ids)} duplicate trip_id value(s)",
            duplicates=duplicate_trip_ids,
        ))

    duplicate_service_ids = find_duplicates(c.service_id for c in dataset.calendars)
    if duplicate_service_ids:
        issues.append(ValidationIssue(
            file="calendar.txt",
            field="service_id",
            message=f"Found {len(duplicate_service_ids)} duplicate service_id value(s)",
            duplicates=duplicate_service_ids,
        ))

    duplicate_exception_keys = find_duplicates(
        (cd.service_id, _normalise_date(cd.date)) for cd in dataset.calendar_dates
    )
    if duplicate_exception_keys:
        issues.append(ValidationIssue(
            file="calendar_dates.txt",
            field="service_id + date",
            message=(
                f"Found {len(duplicate_exception_keys)} duplicate "
                f"service_id + date combination(s)"
            ),
            duplicates=[
                f'service_id="{service_id}", date="{service_date}"'
                for service_id, service_date in duplicate_exception_keys
            ],
        ))

    if issues:
        logger.warning(
            "Feed failed uniqueness validation: %s",
            "; ".join(f"{i.file} [{i.field}] {i.message}" for i in issues),
        )

    return ValidationResult(
        is_valid=not issues,
        issues=issues,
        stats=ValidationStats(
            trips_checked=len(dataset.trips),
            calendars_checked=len(dataset.calendars),
            calendar_dates_checked=len(dataset.calendar_dates),
        ),
    )
