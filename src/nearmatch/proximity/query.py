"""
Proximity queries ("who is near me").

Pipeline for one query:
freshness gate -> latest-wins per entity -> haversine distance -> radius filter
-> sort by (distance, entity id) -> truncate to limit.

Everything here is a pure function of its inputs: candidates are read once and never
retained or mutated, so concurrent queries need no coordination.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from math import isfinite
from numbers import Real
from typing import Any, Iterable, Iterator

from nearmatch.config.settings import ProximitySettings
from nearmatch.core.errors import InvalidCoordinate, InvalidQuery
from nearmatch.core.geo import GeoPoint, haversine_m
from nearmatch.core.spatial_index import SpatialGridIndex
from nearmatch.core.time import utc_now
from nearmatch.proximity.freshness import check_max_age, is_fresh, is_future, latest_per_entity, select_fresh
from nearmatch.proximity.reports import EntityId, LocationReport

logger = logging.getLogger(__name__)


def entity_sort_key(entity_id: EntityId) -> tuple[int, int, str]:
    """Total order over mixed ids: integers numerically, then strings lexicographically."""
    if isinstance(entity_id, int):
        return (0, entity_id, "")
    return (1, 0, entity_id)


@dataclass(frozen=True)
class ProximityQuery:
    """One "find nearby" request. Validated on construction."""

    origin: GeoPoint
    radius_m: float
    limit: int
    max_age: timedelta
    exclude_ids: frozenset[EntityId] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not isinstance(self.origin, GeoPoint):
            raise InvalidCoordinate("origin must be a GeoPoint")
        if isinstance(self.radius_m, bool) or not isinstance(self.radius_m, Real):
            raise InvalidQuery("radius_m must be a number")
        if not isfinite(self.radius_m) or self.radius_m <= 0:
            raise InvalidQuery(f"radius_m must be > 0, got {self.radius_m!r}")
        if isinstance(self.limit, bool) or not isinstance(self.limit, int):
            raise InvalidQuery("limit must be an integer")
        if self.limit <= 0:
            raise InvalidQuery(f"limit must be > 0, got {self.limit!r}")
        check_max_age(self.max_age)
        object.__setattr__(self, "radius_m", float(self.radius_m))
        object.__setattr__(self, "exclude_ids", frozenset(self.exclude_ids))


@dataclass(frozen=True)
class ProximityMatch:
    entity_id: EntityId
    distance_m: float
    report: LocationReport


@dataclass(frozen=True)
class NearbyStats:
    """Per-query telemetry: what was considered, dropped and returned."""

    considered: int = 0
    fresh: int = 0
    stale: int = 0
    future: int = 0
    invalid: int = 0
    excluded: int = 0
    within_radius: int = 0
    returned: int = 0
    elapsed_ms: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "considered": self.considered,
            "fresh": self.fresh,
            "stale": self.stale,
            "future": self.future,
            "invalid": self.invalid,
            "excluded": self.excluded,
            "within_radius": self.within_radius,
            "returned": self.returned,
            "elapsed_ms": round(self.elapsed_ms, 3),
        }


@dataclass(frozen=True)
class ProximityResult:
    """Matches ordered by ascending distance, ties by ascending entity id."""

    matches: tuple[ProximityMatch, ...]
    stats: NearbyStats = field(default_factory=NearbyStats, compare=False)

    def __iter__(self) -> Iterator[ProximityMatch]:
        return iter(self.matches)

    def __len__(self) -> int:
        return len(self.matches)

    def pairs(self) -> list[tuple[EntityId, float]]:
        return [(m.entity_id, m.distance_m) for m in self.matches]


def _rank(matches: list[ProximityMatch], limit: int) -> tuple[ProximityMatch, ...]:
    matches.sort(key=lambda m: (m.distance_m, entity_sort_key(m.entity_id)))
    return tuple(matches[:limit])


def _log_stats(stats: NearbyStats) -> None:
    logger.debug(
        "find_nearby considered=%d fresh=%d stale=%d future=%d invalid=%d returned=%d elapsed_ms=%.3f",
        stats.considered,
        stats.fresh,
        stats.stale,
        stats.future,
        stats.invalid,
        stats.returned,
        stats.elapsed_ms,
    )


def find_nearby(
    query: ProximityQuery,
    candidates: Iterable[Any],
    *,
    as_of: datetime | None = None,
) -> ProximityResult:
    """Return the entities within `query.radius_m` of `query.origin`, nearest first.

    `as_of` is the evaluation time for the freshness gate (defaults to now, UTC).
    Candidates that are not `LocationReport` instances are skipped and counted.
    """
    if not isinstance(query, ProximityQuery):
        raise InvalidQuery(f"expected ProximityQuery, got {type(query).__name__}")
    t0 = time.monotonic()
    as_of = as_of or utc_now()

    outcome = select_fresh(candidates, as_of=as_of, max_age=query.max_age)

    matches: list[ProximityMatch] = []
    excluded = 0
    for entity_id, report in outcome.latest.items():
        if entity_id in query.exclude_ids:
            excluded += 1
            continue
        d = haversine_m(query.origin, report.point)
        if d <= query.radius_m:
            matches.append(ProximityMatch(entity_id=entity_id, distance_m=d, report=report))

    within = len(matches)
    ranked = _rank(matches, query.limit)
    stats = NearbyStats(
        considered=outcome.considered,
        fresh=len(outcome.latest),
        stale=outcome.stale,
        future=outcome.future,
        invalid=outcome.invalid,
        excluded=excluded,
        within_radius=within,
        returned=len(ranked),
        elapsed_ms=(time.monotonic() - t0) * 1000,
    )
    _log_stats(stats)
    return ProximityResult(matches=ranked, stats=stats)


class ProximityIndex:
    """A bucketed snapshot of the latest report per entity, for many queries at one `as_of`.

    Future-timestamped and non-report candidates are dropped when the snapshot is built;
    the freshness gate is applied per query (its `max_age` may differ). Results are
    identical to `find_nearby` over the same candidates. In `stats`, `stale` only counts
    entities inside the search radius.
    """

    def __init__(
        self,
        candidates: Iterable[Any],
        *,
        as_of: datetime | None = None,
        cell_size_deg: float = 0.05,
    ):
        self.as_of = as_of or utc_now()
        if self.as_of.tzinfo is None:
            raise InvalidQuery("as_of must be timezone-aware")
        self._considered = 0
        self._future = 0
        self._invalid = 0
        valid: list[LocationReport] = []
        for c in candidates:
            self._considered += 1
            if not isinstance(c, LocationReport):
                self._invalid += 1
                continue
            if is_future(c, self.as_of):
                self._future += 1
                continue
            valid.append(c)
        self._latest = latest_per_entity(valid)
        self._grid: SpatialGridIndex[LocationReport] = SpatialGridIndex(
            self._latest.values(), get_point=lambda r: r.point, cell_size_deg=cell_size_deg
        )

    def __len__(self) -> int:
        return len(self._latest)

    def get(self, entity_id: EntityId) -> LocationReport | None:
        return self._latest.get(entity_id)

    def entity_ids(self) -> list[EntityId]:
        return sorted(self._latest, key=entity_sort_key)

    def find_nearby(self, query: ProximityQuery) -> ProximityResult:
        if not isinstance(query, ProximityQuery):
            raise InvalidQuery(f"expected ProximityQuery, got {type(query).__name__}")
        t0 = time.monotonic()
        matches: list[ProximityMatch] = []
        stale = 0
        excluded = 0
        for report, d in self._grid.query_within(origin=query.origin, radius_m=query.radius_m):
            if not is_fresh(report, self.as_of, query.max_age):
                stale += 1
                continue
            if report.entity_id in query.exclude_ids:
                excluded += 1
                continue
            matches.append(ProximityMatch(entity_id=report.entity_id, distance_m=d, report=report))

        within = len(matches)
        ranked = _rank(matches, query.limit)
        stats = NearbyStats(
            considered=self._considered,
            fresh=within + excluded,
            stale=stale,
            future=self._future,
            invalid=self._invalid,
            excluded=excluded,
            within_radius=within,
            returned=len(ranked),
            elapsed_ms=(time.monotonic() - t0) * 1000,
        )
        _log_stats(stats)
        return ProximityResult(matches=ranked, stats=stats)


def build_query(
    settings: ProximitySettings,
    *,
    origin: GeoPoint,
    radius_m: float | None = None,
    limit: int | None = None,
    max_age_s: float | None = None,
    exclude_ids: Iterable[EntityId] = (),
) -> ProximityQuery:
    """Build a query for the request layer: fill configured defaults and enforce maxima.

    Values above `max_radius_m` / `max_limit` / `max_max_age_seconds` are rejected, not clamped.
    """
    radius = settings.default_radius_m if radius_m is None else radius_m
    lim = settings.default_limit if limit is None else limit
    age_s = settings.default_max_age_seconds if max_age_s is None else max_age_s

    if isinstance(radius, Real) and not isinstance(radius, bool) and radius > settings.max_radius_m:
        raise InvalidQuery(f"radius_m must be <= {settings.max_radius_m:g}, got {radius!r}")
    if isinstance(lim, int) and not isinstance(lim, bool) and lim > settings.max_limit:
        raise InvalidQuery(f"limit must be <= {settings.max_limit}, got {lim!r}")
    if isinstance(age_s, bool) or not isinstance(age_s, Real) or not isfinite(age_s):
        raise InvalidQuery("max_age_s must be a finite number")
    if age_s > settings.max_max_age_seconds:
        raise InvalidQuery(f"max_age_s must be <= {settings.max_max_age_seconds:g}, got {age_s!r}")

    return ProximityQuery(
        origin=origin,
        radius_m=radius,
        limit=lim,
        max_age=timedelta(seconds=float(age_s)),
        exclude_ids=frozenset(exclude_ids),
    )
