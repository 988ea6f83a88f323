"""
In-memory registry of the latest shared location per entity.

This is the request layer's stand-in for the location columns a database would hold.
The proximity core never sees it directly: routes take a `snapshot()` and pass the
resulting list to `find_nearby`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from nearmatch.core.time import utc_now
from nearmatch.proximity.movement import MovementGate
from nearmatch.proximity.reports import EntityId, LocationReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateOutcome:
    stored: LocationReport
    moved: bool
    accepted: bool


class LocationRegistry:
    def __init__(self, *, gate: MovementGate | None = None, max_clock_skew: timedelta = timedelta(seconds=5)):
        self._gate = gate or MovementGate()
        self._max_clock_skew = max_clock_skew
        self._lock = threading.Lock()
        self._latest: dict[EntityId, LocationReport] = {}

    def update(self, report: LocationReport, *, now: datetime | None = None) -> UpdateOutcome:
        """Store `report` (latest-wins, movement below the noise threshold only refreshes time).

        Reports timestamped more than `max_clock_skew` after `now` raise `ValueError` and are
        never stored, so a fast phone clock cannot lock out later valid reports.
        """
        now = now or utc_now()
        if report.observed_at > now + self._max_clock_skew:
            raise ValueError(f"observed_at {report.observed_at.isoformat()} is in the future")
        with self._lock:
            previous = self._latest.get(report.entity_id)
            if previous is not None and report.observed_at < previous.observed_at:
                logger.debug("Ignoring out-of-order report for %s", report.entity_id)
                return UpdateOutcome(stored=previous, moved=False, accepted=False)
            stored, moved = self._gate.apply(previous, report)
            self._latest[report.entity_id] = stored
        logger.debug("Location update for %s moved=%s", report.entity_id, moved)
        return UpdateOutcome(stored=stored, moved=moved, accepted=True)

    def remove(self, entity_id: EntityId) -> bool:
        """Stop sharing: the entity no longer appears in anyone's nearby list."""
        with self._lock:
            return self._latest.pop(entity_id, None) is not None

    def get(self, entity_id: EntityId) -> LocationReport | None:
        with self._lock:
            return self._latest.get(entity_id)

    def snapshot(self) -> list[LocationReport]:
        with self._lock:
            return list(self._latest.values())

    def clear(self) -> None:
        with self._lock:
            self._latest.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._latest)
