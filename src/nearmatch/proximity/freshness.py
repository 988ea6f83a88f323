"""
Location freshness policy.

Mobile clients report intermittently, so a stored location is only trusted for a
"nearby" query while it is younger than `max_age`. Reports timestamped after the
evaluation time are invalid (clock skew or forged) and are excluded, never preferred.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from nearmatch.core.errors import InvalidQuery
from nearmatch.proximity.reports import EntityId, LocationReport

logger = logging.getLogger(__name__)


def check_max_age(max_age: timedelta) -> timedelta:
    if not isinstance(max_age, timedelta):
        raise InvalidQuery(f"max_age must be a timedelta, got {type(max_age).__name__}")
    if max_age <= timedelta(0):
        raise InvalidQuery("max_age must be > 0")
    return max_age


def is_future(report: LocationReport, as_of: datetime) -> bool:
    return report.observed_at > as_of


def is_fresh(report: LocationReport, as_of: datetime, max_age: timedelta) -> bool:
    """True when `report` was observed no later than `as_of` and at most `max_age` before it."""
    if is_future(report, as_of):
        return False
    return as_of - report.observed_at <= max_age


def _newer(a: LocationReport, b: LocationReport) -> bool:
    # Equal timestamps fall back to the point so the winner does not depend on input order.
    return (a.observed_at, a.point.lat, a.point.lon) > (b.observed_at, b.point.lat, b.point.lon)


@dataclass
class FreshnessOutcome:
    """Latest fresh report per entity plus counts of what was dropped."""

    latest: dict[EntityId, LocationReport] = field(default_factory=dict)
    considered: int = 0
    stale: int = 0
    future: int = 0
    invalid: int = 0


def latest_per_entity(reports: Iterable[LocationReport]) -> dict[EntityId, LocationReport]:
    """Latest-wins reconciliation of several reports for the same entity."""
    latest: dict[EntityId, LocationReport] = {}
    for r in reports:
        current = latest.get(r.entity_id)
        if current is None or _newer(r, current):
            latest[r.entity_id] = r
    return latest


def select_fresh(candidates: Iterable[Any], *, as_of: datetime, max_age: timedelta) -> FreshnessOutcome:
    """Apply the freshness gate, then latest-wins, to a batch of candidates.

    Items that are not `LocationReport` instances are counted as `invalid` and skipped.
    """
    check_max_age(max_age)
    if as_of.tzinfo is None:
        raise InvalidQuery("as_of must be timezone-aware")

    out = FreshnessOutcome()
    fresh: list[LocationReport] = []
    for c in candidates:
        out.considered += 1
        if not isinstance(c, LocationReport):
            out.invalid += 1
            logger.debug("Skipping non-report candidate of type %s", type(c).__name__)
            continue
        if is_future(c, as_of):
            out.future += 1
            continue
        if not is_fresh(c, as_of, max_age):
            out.stale += 1
            continue
        fresh.append(c)
    out.latest = latest_per_entity(fresh)
    return out
