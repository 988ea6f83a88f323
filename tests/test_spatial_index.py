import pytest

from nearmatch.core.geo import GeoPoint, haversine_m
from nearmatch.core.spatial_index import SpatialGridIndex


def _index(points, cell_size_deg=0.05):
    return SpatialGridIndex(points, get_point=lambda p: p, cell_size_deg=cell_size_deg)


def test_query_within_returns_items_with_exact_distances():
    origin = GeoPoint(lat=25.0478, lon=121.5170)
    near = GeoPoint(lat=25.0500, lon=121.5170)
    far = GeoPoint(lat=25.2000, lon=121.5170)
    index = _index([near, far])

    hits = index.query_within(origin=origin, radius_m=1_000)
    assert hits == [(near, haversine_m(origin, near))]
    assert len(index) == 2


def test_query_within_wraps_across_the_antimeridian():
    origin = GeoPoint(lat=0.0, lon=179.999)
    across = GeoPoint(lat=0.0, lon=-179.999)
    hits = _index([across]).query_within(origin=origin, radius_m=1_000)
    assert [p for p, _ in hits] == [across]


def test_query_within_near_a_pole_checks_every_longitude():
    origin = GeoPoint(lat=89.999, lon=0.0)
    other_side = GeoPoint(lat=89.999, lon=180.0)
    hits = _index([other_side]).query_within(origin=origin, radius_m=1_000)
    assert [p for p, _ in hits] == [other_side]


def test_non_positive_radius_returns_nothing():
    p = GeoPoint(lat=1.0, lon=1.0)
    assert _index([p]).query_within(origin=p, radius_m=0) == []


def test_huge_radius_returns_everything():
    points = [GeoPoint(lat=10.0, lon=10.0), GeoPoint(lat=-10.0, lon=-170.0)]
    hits = _index(points).query_within(origin=GeoPoint(lat=0.0, lon=0.0), radius_m=30_000_000)
    assert sorted(p.lon for p, _ in hits) == [-170.0, 10.0]


def test_cell_size_must_be_positive():
    with pytest.raises(ValueError):
        _index([], cell_size_deg=0)
