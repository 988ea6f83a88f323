from __future__ import annotations
from dataclasses import dataclass
from math import atan2, cos, isfinite, radians, sin, sqrt
from numbers import Real

from nearmatch.core.errors import InvalidCoordinate

"""
Geospatial helpers.

One distance formula (haversine on a spherical Earth) is used everywhere. Coordinates
must already be numeric: text is parsed once at the ingestion boundary
(`nearmatch.proximity.reports`), never here.
"""

EARTH_RADIUS_M = 6_371_000.0


def _check_coordinate(name: str, value: object, bound: float) -> float:
    # bool is a Real subclass; a True latitude is always a bug upstream.
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidCoordinate(f"{name} must be a number, got {type(value).__name__}")
    v = float(value)
    if not isfinite(v):
        raise InvalidCoordinate(f"{name} must be finite, got {v!r}")
    if v < -bound or v > bound:
        raise InvalidCoordinate(f"{name} must be within [-{bound:g}, {bound:g}], got {v!r}")
    return v


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees (validated, never clamped)."""

    lat: float
    lon: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "lat", _check_coordinate("lat", self.lat, 90.0))
        object.__setattr__(self, "lon", _check_coordinate("lon", self.lon, 180.0))


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points.

    The result is unrounded double precision; `haversine_m(p, p)` is exactly 0.0 and
    the formula is symmetric in its arguments.
    """
    if not isinstance(a, GeoPoint) or not isinstance(b, GeoPoint):
        raise InvalidCoordinate("haversine_m expects GeoPoint arguments")

    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlat = radians(b.lat - a.lat)
    dlon = radians(b.lon - a.lon)

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    h = min(1.0, h)
    c = 2 * atan2(sqrt(h), sqrt(1 - h))
    return EARTH_RADIUS_M * c
