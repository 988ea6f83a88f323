"""
Movement noise policy.

GPS fixes jitter by several meters even when a phone is still. Instead of distorting
computed distances, small reported movements are suppressed here: an update that moves
less than the sensor's accuracy (or a configured floor) keeps the previous point and only
refreshes the timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from nearmatch.core.geo import haversine_m
from nearmatch.proximity.reports import LocationReport


@dataclass(frozen=True)
class MovementGate:
    min_delta_m: float = 10.0
    use_reported_accuracy: bool = True

    def __post_init__(self) -> None:
        if self.min_delta_m < 0:
            raise ValueError("min_delta_m must be >= 0")

    def threshold_m(self, previous: LocationReport, current: LocationReport) -> float:
        threshold = float(self.min_delta_m)
        if self.use_reported_accuracy:
            for acc in (previous.accuracy_m, current.accuracy_m):
                if acc is not None:
                    threshold = max(threshold, float(acc))
        return threshold

    def is_significant(self, previous: LocationReport | None, current: LocationReport) -> bool:
        """True when `current` should replace the stored point of `previous`."""
        if previous is None:
            return True
        return haversine_m(previous.point, current.point) > self.threshold_m(previous, current)

    def apply(self, previous: LocationReport | None, current: LocationReport) -> tuple[LocationReport, bool]:
        """Return the report to store and whether the stored point moved."""
        if previous is None or self.is_significant(previous, current):
            return current, True
        if current.observed_at <= previous.observed_at:
            return previous, False
        return replace(previous, observed_at=current.observed_at, accuracy_m=current.accuracy_m), False
