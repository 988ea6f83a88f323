"""
Lightweight spatial indexing (grid bucket) for lat/lon points.

Used when one snapshot of locations answers many radius queries (e.g. computing every
connected user's nearby list). Cells are fixed-size in degrees; a query visits only the
cells that can intersect the search circle's bounding box and then checks each entry with
the exact haversine distance, so results match a full scan.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Iterator, TypeVar

from nearmatch.core.geo import EARTH_RADIUS_M, GeoPoint, haversine_m

T = TypeVar("T")


@dataclass(frozen=True)
class _Entry(Generic[T]):
    item: T
    point: GeoPoint


class SpatialGridIndex(Generic[T]):
    def __init__(
        self,
        items: Iterable[T],
        *,
        get_point: Callable[[T], GeoPoint],
        cell_size_deg: float = 0.05,
    ):
        if float(cell_size_deg) <= 0:
            raise ValueError("cell_size_deg must be > 0")
        self._cell = float(cell_size_deg)
        # Longitude cells are stretched slightly so a whole number of them spans 360 degrees.
        self._n_cols = max(1, int(round(360.0 / self._cell)))
        self._cell_lon = 360.0 / self._n_cols
        self._cells: dict[tuple[int, int], list[_Entry[T]]] = {}
        self._size = 0

        for it in items:
            p = get_point(it)
            self._cells.setdefault(self._cell_key(p.lat, p.lon), []).append(_Entry(item=it, point=p))
            self._size += 1

    def __len__(self) -> int:
        return self._size

    def _row(self, lat: float) -> int:
        return int(math.floor((lat + 90.0) / self._cell))

    def _col(self, lon: float) -> int:
        return int(math.floor((lon + 180.0) / self._cell_lon)) % self._n_cols

    def _cell_key(self, lat: float, lon: float) -> tuple[int, int]:
        return self._row(lat), self._col(lon)

    def _candidate_cells(self, origin: GeoPoint, radius_m: float) -> Iterator[list[_Entry[T]]]:
        delta = radius_m / EARTH_RADIUS_M
        if delta >= math.pi:
            yield from self._cells.values()
            return

        delta_deg = math.degrees(delta)
        row_lo = self._row(max(-90.0, origin.lat - delta_deg)) - 1
        row_hi = self._row(min(90.0, origin.lat + delta_deg)) + 1

        # Bounding box over a pole spans every longitude.
        if origin.lat + delta_deg >= 90.0 or origin.lat - delta_deg <= -90.0:
            cols = None
        else:
            ratio = math.sin(delta) / math.cos(math.radians(origin.lat))
            dlon_deg = 180.0 if ratio >= 1.0 else math.degrees(math.asin(ratio))
            col_lo = int(math.floor((origin.lon - dlon_deg + 180.0) / self._cell_lon)) - 1
            col_hi = int(math.floor((origin.lon + dlon_deg + 180.0) / self._cell_lon)) + 1
            cols = None if col_hi - col_lo + 1 >= self._n_cols else {c % self._n_cols for c in range(col_lo, col_hi + 1)}

        if cols is None:
            for (row, _), cell in self._cells.items():
                if row_lo <= row <= row_hi:
                    yield cell
            return
        for row in range(row_lo, row_hi + 1):
            for col in cols:
                cell = self._cells.get((row, col))
                if cell:
                    yield cell

    def query_within(self, *, origin: GeoPoint, radius_m: float) -> list[tuple[T, float]]:
        """Return `(item, distance_m)` for every item within `radius_m` of `origin` (unordered)."""
        r = float(radius_m)
        if r <= 0:
            return []
        out: list[tuple[T, float]] = []
        for cell in self._candidate_cells(origin, r):
            for e in cell:
                d = haversine_m(origin, e.point)
                if d <= r:
                    out.append((e.item, d))
        return out
