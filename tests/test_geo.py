import math
import random

import pytest

from nearmatch.core.errors import InvalidCoordinate
from nearmatch.core.geo import EARTH_RADIUS_M, GeoPoint, haversine_m


def _random_point(rng: random.Random) -> GeoPoint:
    return GeoPoint(lat=rng.uniform(-90, 90), lon=rng.uniform(-180, 180))


def test_haversine_short_range_has_no_noise_correction():
    # Two phones ~21 m apart; the raw haversine value must not be scaled down.
    a = GeoPoint(lat=41.0124762, lon=29.1328051)
    b = GeoPoint(lat=41.0123150, lon=29.1326827)
    d = haversine_m(a, b)
    assert 19 <= d <= 23


def test_haversine_identical_points_is_exactly_zero():
    p = GeoPoint(lat=41.0124762, lon=29.1328051)
    assert haversine_m(p, p) == 0.0


def test_haversine_one_degree_of_latitude():
    d = haversine_m(GeoPoint(lat=0.0, lon=0.0), GeoPoint(lat=1.0, lon=0.0))
    assert d == pytest.approx(EARTH_RADIUS_M * math.pi / 180, rel=1e-12)


def test_haversine_antipodal_points_are_half_the_circumference():
    half = EARTH_RADIUS_M * math.pi
    assert haversine_m(GeoPoint(lat=0.0, lon=0.0), GeoPoint(lat=0.0, lon=180.0)) == pytest.approx(half, rel=1e-9)
    assert haversine_m(GeoPoint(lat=90.0, lon=0.0), GeoPoint(lat=-90.0, lon=0.0)) == pytest.approx(half, rel=1e-9)


def test_haversine_crosses_the_antimeridian():
    d = haversine_m(GeoPoint(lat=0.0, lon=179.999), GeoPoint(lat=0.0, lon=-179.999))
    assert d == pytest.approx(EARTH_RADIUS_M * math.radians(0.002), rel=1e-6)


def test_haversine_is_symmetric():
    rng = random.Random(7)
    for _ in range(500):
        a, b = _random_point(rng), _random_point(rng)
        assert haversine_m(a, b) == pytest.approx(haversine_m(b, a), rel=1e-6)


def test_haversine_satisfies_triangle_inequality():
    rng = random.Random(11)
    for _ in range(500):
        a, b, c = _random_point(rng), _random_point(rng), _random_point(rng)
        assert haversine_m(a, c) <= haversine_m(a, b) + haversine_m(b, c) + 1e-3


def test_haversine_rejects_non_points():
    with pytest.raises(InvalidCoordinate):
        haversine_m((41.0, 29.0), GeoPoint(lat=41.0, lon=29.0))  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "lat,lon",
    [
        (95, 0),
        (-90.0001, 0),
        (0, 180.5),
        (0, -181),
        (float("nan"), 0),
        (0, float("inf")),
    ],
)
def test_geopoint_rejects_out_of_range(lat, lon):
    with pytest.raises(InvalidCoordinate):
        GeoPoint(lat=lat, lon=lon)


@pytest.mark.parametrize("value", ["41.01", None, True, b"41"])
def test_geopoint_rejects_non_numeric(value):
    with pytest.raises(InvalidCoordinate):
        GeoPoint(lat=value, lon=29.0)


def test_geopoint_accepts_bounds_and_normalizes_ints():
    p = GeoPoint(lat=-90, lon=180)
    assert p.lat == -90.0 and isinstance(p.lat, float)
    assert p.lon == 180.0 and isinstance(p.lon, float)


def test_invalid_coordinate_is_a_value_error():
    # Request layers map ValueError to HTTP 400.
    with pytest.raises(ValueError):
        GeoPoint(lat=95, lon=0)
