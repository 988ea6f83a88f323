"""
NearMatch CLI entrypoint.

Intended for local debugging of distances and nearby queries without the API:

    nearmatch distance 41.0124762 29.1328051 41.0123150 29.1326827
    nearmatch nearby --reports reports.json --lat 41.01 --lon 29.13 --radius-m 2000
"""

from __future__ import annotations

import argparse
import json
from typing import Any

from nearmatch.config.settings import get_settings
from nearmatch.core.geo import GeoPoint, haversine_m
from nearmatch.core.logging import configure_logging
from nearmatch.core.time import parse_datetime, utc_now
from nearmatch.proximity.query import build_query, find_nearby
from nearmatch.proximity.reports import load_reports, parse_coordinate


def _cmd_distance(args: argparse.Namespace) -> int:
    a = GeoPoint(lat=parse_coordinate(args.lat1, name="lat1"), lon=parse_coordinate(args.lon1, name="lon1"))
    b = GeoPoint(lat=parse_coordinate(args.lat2, name="lat2"), lon=parse_coordinate(args.lon2, name="lon2"))
    d = haversine_m(a, b)
    if args.json:
        print(json.dumps({"distance_m": d}))
    else:
        print(f"{d:.2f} m")
    return 0


def _cmd_nearby(args: argparse.Namespace) -> int:
    settings = get_settings()
    as_of = parse_datetime(args.as_of, settings.app.timezone) if args.as_of else utc_now()
    query = build_query(
        settings.proximity,
        origin=GeoPoint(lat=float(args.lat), lon=float(args.lon)),
        radius_m=args.radius_m,
        limit=args.limit,
        max_age_s=args.max_age_s,
        exclude_ids=[int(x) if x.lstrip("-").isdigit() else x for x in args.exclude],
    )
    reports, skipped = load_reports(args.reports, timezone=settings.app.timezone)
    result = find_nearby(query, reports, as_of=as_of)

    if args.json:
        payload = {
            "as_of": as_of.isoformat(),
            "results": [{"entity_id": eid, "distance_m": d} for eid, d in result.pairs()],
            "stats": {**result.stats.as_dict(), "skipped_reports": skipped},
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    print(f"As of: {as_of.isoformat()}  radius={query.radius_m:g}m  limit={query.limit}")
    for i, m in enumerate(result, start=1):
        print(f"{i:>3}. {m.entity_id}  {m.distance_m:.0f} m  (seen {m.report.observed_at.isoformat()})")
    stats = result.stats
    print(
        f"considered={stats.considered} stale={stats.stale} future={stats.future} "
        f"skipped={skipped} returned={stats.returned}"
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the NearMatch CLI."""
    parser = argparse.ArgumentParser(prog="nearmatch")
    sub = parser.add_subparsers(dest="command", required=True)

    dist = sub.add_parser("distance", help="Great-circle distance in meters between two points.")
    dist.add_argument("lat1")
    dist.add_argument("lon1")
    dist.add_argument("lat2")
    dist.add_argument("lon2")
    dist.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    dist.set_defaults(func=_cmd_distance)

    near = sub.add_parser("nearby", help="Rank reports from a JSON file by distance to a point.")
    near.add_argument("--reports", required=True, help="JSON file: list of {entity_id, lat, lon, observed_at}")
    near.add_argument("--lat", required=True, type=float)
    near.add_argument("--lon", required=True, type=float)
    near.add_argument("--radius-m", dest="radius_m", type=float, default=None)
    near.add_argument("--limit", type=int, default=None)
    near.add_argument("--max-age-s", dest="max_age_s", type=float, default=None)
    near.add_argument("--as-of", dest="as_of", default=None, help="ISO datetime; defaults to now")
    near.add_argument("--exclude", action="append", default=[], help="Repeatable entity id to leave out")
    near.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    near.set_defaults(func=_cmd_nearby)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m nearmatch.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    try:
        return int(func(args))
    except ValueError as e:
        parser.exit(2, f"nearmatch: error: {e}\n")


if __name__ == "__main__":
    raise SystemExit(main())
