"""
Location reports and the ingestion boundary.

`LocationReport` is the immutable record the proximity core consumes. Mobile clients
(and older database rows) often send coordinates as text, so `parse_report` is the one
place where raw payloads are parsed into numbers and range-checked. Everything past this
module only ever sees `GeoPoint` values.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from math import isfinite
from numbers import Real
from pathlib import Path
from typing import Any, Iterable, Mapping, Union

from nearmatch.core.env import resolve_project_path
from nearmatch.core.errors import InvalidCoordinate
from nearmatch.core.geo import GeoPoint
from nearmatch.core.time import ensure_tz, parse_datetime, utc_now

logger = logging.getLogger(__name__)

EntityId = Union[int, str]


@dataclass(frozen=True)
class LocationReport:
    """One observation of an entity's position."""

    entity_id: EntityId
    point: GeoPoint
    observed_at: datetime
    accuracy_m: float | None = None

    def __post_init__(self) -> None:
        if isinstance(self.entity_id, bool) or not isinstance(self.entity_id, (int, str)):
            raise ValueError(f"entity_id must be an int or str, got {type(self.entity_id).__name__}")
        if not isinstance(self.point, GeoPoint):
            raise InvalidCoordinate("point must be a GeoPoint")
        if not isinstance(self.observed_at, datetime) or self.observed_at.tzinfo is None:
            raise ValueError("observed_at must be a timezone-aware datetime")
        if self.accuracy_m is not None and (
            isinstance(self.accuracy_m, bool)
            or not isinstance(self.accuracy_m, Real)
            or not isfinite(self.accuracy_m)
            or self.accuracy_m < 0
        ):
            raise ValueError("accuracy_m must be a non-negative number")


def parse_coordinate(value: Any, *, name: str) -> float:
    """Parse a numeric or numeric-text coordinate; raises `InvalidCoordinate` otherwise."""
    if isinstance(value, bool) or value is None:
        raise InvalidCoordinate(f"{name} is missing or not numeric")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            raise InvalidCoordinate(f"{name} is not numeric: {value!r}") from None
    raise InvalidCoordinate(f"{name} is not numeric: {type(value).__name__}")


def _parse_observed_at(value: Any, *, timezone: str, default: datetime | None) -> datetime:
    if value is None:
        return default if default is not None else utc_now()
    if isinstance(value, datetime):
        return ensure_tz(value, timezone)
    if isinstance(value, str):
        return parse_datetime(value, timezone)
    raise ValueError(f"observed_at must be an ISO-8601 string or datetime, got {type(value).__name__}")


def parse_report(
    raw: Mapping[str, Any],
    *,
    timezone: str = "UTC",
    default_observed_at: datetime | None = None,
    require_timestamp: bool = False,
) -> LocationReport:
    """Parse one raw report mapping (`entity_id`, `lat`, `lon`, optional `observed_at`, `accuracy_m`).

    `latitude`/`longitude` are accepted as aliases for `lat`/`lon`. A missing `observed_at`
    defaults to `default_observed_at` (or now) unless `require_timestamp` is set.
    """
    if not isinstance(raw, Mapping):
        raise ValueError(f"report must be an object, got {type(raw).__name__}")
    if require_timestamp and raw.get("observed_at") is None:
        raise ValueError("observed_at is required")
    entity_id = raw.get("entity_id")
    if isinstance(entity_id, str):
        entity_id = entity_id.strip()
        if not entity_id:
            raise ValueError("entity_id must not be empty")

    lat = parse_coordinate(raw.get("lat", raw.get("latitude")), name="lat")
    lon = parse_coordinate(raw.get("lon", raw.get("longitude")), name="lon")

    accuracy_raw = raw.get("accuracy_m", raw.get("accuracy"))
    accuracy = None if accuracy_raw is None else parse_coordinate(accuracy_raw, name="accuracy_m")

    return LocationReport(
        entity_id=entity_id,
        point=GeoPoint(lat=lat, lon=lon),
        observed_at=_parse_observed_at(raw.get("observed_at"), timezone=timezone, default=default_observed_at),
        accuracy_m=accuracy,
    )


def parse_reports(
    raws: Iterable[Any],
    *,
    timezone: str = "UTC",
    default_observed_at: datetime | None = None,
    require_timestamp: bool = False,
) -> tuple[list[LocationReport], int]:
    """Parse a batch of raw reports, skipping malformed ones.

    Returns `(reports, skipped_count)`; one bad report never fails the batch.
    """
    out: list[LocationReport] = []
    skipped = 0
    for i, raw in enumerate(raws):
        try:
            out.append(
                parse_report(
                    raw,
                    timezone=timezone,
                    default_observed_at=default_observed_at,
                    require_timestamp=require_timestamp,
                )
            )
        except ValueError as e:
            skipped += 1
            logger.debug("Skipping malformed location report #%d: %s", i, str(e))
    return out, skipped


def load_reports(path: str | Path, *, timezone: str = "UTC") -> tuple[list[LocationReport], int]:
    """Load a JSON file holding a list of raw reports (or `{"reports": [...]}`)."""
    resolved = resolve_project_path(path)
    payload = json.loads(resolved.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("reports") or []
    if not isinstance(payload, list):
        raise ValueError(f"Invalid report file {resolved}; expected a list of reports.")
    return parse_reports(payload, timezone=timezone, require_timestamp=True)
