"""
API routes.

Endpoints:
- POST   `/api/locations`: store a live location update (movement noise policy applied).
- DELETE `/api/locations/{entity_id}`: stop sharing.
- POST   `/api/nearby`: nearby query around an explicit origin (registry or posted reports).
- GET    `/api/nearby/{entity_id}`: nearby query around an entity's own location (self excluded).
- GET    `/api/broadcast`: every sharing entity's nearby list from one snapshot.
- GET    `/api/settings`: public proximity bounds for clients.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, HTTPException

from nearmatch.api.registry import LocationRegistry
from nearmatch.config.settings import Settings, get_settings
from nearmatch.core.errors import ProximityError
from nearmatch.core.geo import GeoPoint
from nearmatch.core.time import ensure_tz, utc_now
from nearmatch.domain.models import (
    GeoPointIn,
    LocationUpdate,
    NearbyItem,
    NearbyRequest,
    NearbyResponse,
)
from nearmatch.proximity.freshness import is_fresh
from nearmatch.proximity.movement import MovementGate
from nearmatch.proximity.query import (
    ProximityIndex,
    ProximityMatch,
    ProximityQuery,
    ProximityResult,
    build_query,
    find_nearby,
)
from nearmatch.proximity.reports import EntityId, parse_report, parse_reports

router = APIRouter()


@lru_cache
def _registry() -> LocationRegistry:
    settings = get_settings()
    gate = MovementGate(
        min_delta_m=settings.movement.min_delta_m,
        use_reported_accuracy=settings.movement.use_reported_accuracy,
    )
    return LocationRegistry(
        gate=gate, max_clock_skew=timedelta(seconds=settings.proximity.max_clock_skew_seconds)
    )


def _bad_request(e: ValueError) -> HTTPException:
    code = e.code if isinstance(e, ProximityError) else "VALIDATION_ERROR"
    return HTTPException(status_code=400, detail={"code": code, "message": str(e)})


def _resolve_entity_id(registry: LocationRegistry, raw: str) -> EntityId:
    # Path params are always text; integer ids are stored as ints.
    if registry.get(raw) is None and raw.lstrip("-").isdigit():
        return int(raw)
    return raw


def _item(match: ProximityMatch, *, as_of: datetime, online_window_s: float) -> NearbyItem:
    report = match.report
    return NearbyItem(
        entity_id=match.entity_id,
        distance_m=match.distance_m,
        location=GeoPointIn(lat=report.point.lat, lon=report.point.lon),
        accuracy_m=report.accuracy_m,
        last_seen=report.observed_at,
        is_online=(as_of - report.observed_at) <= timedelta(seconds=online_window_s),
    )


def _response(
    result: ProximityResult,
    query: ProximityQuery,
    *,
    as_of: datetime,
    settings: Settings,
    t0: float,
    meta: dict[str, Any],
) -> NearbyResponse:
    window = settings.proximity.online_window_seconds
    return NearbyResponse(
        generated_at=as_of,
        radius_m=query.radius_m,
        limit=query.limit,
        results=[_item(m, as_of=as_of, online_window_s=window) for m in result],
        meta={
            **meta,
            "stats": result.stats.as_dict(),
            "debug": {"request_id": uuid.uuid4().hex, "api_ms": int((time.monotonic() - t0) * 1000)},
        },
    )


@router.get("/health")
def health() -> dict:
    return {"status": "ok", "sharing": len(_registry())}


@router.get("/api/settings")
def get_public_settings() -> dict:
    """Return the proximity defaults and maxima clients should respect."""
    settings = get_settings()
    return {
        "app": {"name": settings.app.name, "timezone": settings.app.timezone},
        "proximity": settings.proximity.model_dump(mode="json"),
    }


@router.post("/api/locations")
def post_location(update: LocationUpdate) -> dict:
    """Store a live location update for `entity_id`."""
    settings = get_settings()
    try:
        report = parse_report(update.model_dump(), timezone=settings.app.timezone)
        outcome = _registry().update(report)
    except ValueError as e:
        raise _bad_request(e) from e
    stored = outcome.stored
    return {
        "entity_id": stored.entity_id,
        "accepted": outcome.accepted,
        "moved": outcome.moved,
        "location": {"lat": stored.point.lat, "lon": stored.point.lon, "accuracy_m": stored.accuracy_m},
        "observed_at": stored.observed_at.isoformat(),
    }


@router.delete("/api/locations/{entity_id}")
def delete_location(entity_id: str) -> dict:
    """Stop sharing the location of `entity_id` (idempotent)."""
    registry = _registry()
    key = _resolve_entity_id(registry, entity_id)
    return {"entity_id": key, "removed": registry.remove(key)}


@router.post("/api/nearby", response_model=NearbyResponse)
def post_nearby(request: NearbyRequest) -> NearbyResponse:
    """Find entities near an explicit origin."""
    t0 = time.monotonic()
    settings = get_settings()
    as_of = ensure_tz(request.as_of, settings.app.timezone) if request.as_of else utc_now()
    try:
        query = build_query(
            settings.proximity,
            origin=GeoPoint(lat=request.origin.lat, lon=request.origin.lon),
            radius_m=request.radius_m,
            limit=request.limit,
            max_age_s=request.max_age_s,
            exclude_ids=request.exclude_ids,
        )
    except ValueError as e:
        raise _bad_request(e) from e

    if request.reports is None:
        candidates = _registry().snapshot()
        meta: dict[str, Any] = {"source": "registry", "skipped_reports": 0}
    else:
        candidates, skipped = parse_reports(
            request.reports, timezone=settings.app.timezone, require_timestamp=True
        )
        meta = {"source": "request", "skipped_reports": skipped}

    result = find_nearby(query, candidates, as_of=as_of)
    return _response(result, query, as_of=as_of, settings=settings, t0=t0, meta=meta)


@router.get("/api/nearby/{entity_id}", response_model=NearbyResponse)
def get_nearby_for_entity(
    entity_id: str,
    radius_m: float | None = None,
    limit: int | None = None,
    max_age_s: float | None = None,
) -> NearbyResponse:
    """Find entities near `entity_id`'s latest shared location (the entity itself is excluded)."""
    t0 = time.monotonic()
    settings = get_settings()
    registry = _registry()
    key = _resolve_entity_id(registry, entity_id)
    own = registry.get(key)
    if own is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "UNKNOWN_ENTITY", "message": f"No shared location for '{entity_id}'"},
        )
    as_of = utc_now()
    try:
        query = build_query(
            settings.proximity,
            origin=own.point,
            radius_m=radius_m,
            limit=limit,
            max_age_s=max_age_s,
            exclude_ids=[key],
        )
    except ValueError as e:
        raise _bad_request(e) from e

    result = find_nearby(query, registry.snapshot(), as_of=as_of)
    return _response(result, query, as_of=as_of, settings=settings, t0=t0, meta={"source": "registry"})


@router.get("/api/broadcast")
def get_broadcast(
    radius_m: float | None = None,
    limit: int | None = None,
    max_age_s: float | None = None,
) -> dict:
    """Compute every fresh entity's nearby list against one registry snapshot."""
    t0 = time.monotonic()
    settings = get_settings()
    as_of = utc_now()
    index = ProximityIndex(
        _registry().snapshot(), as_of=as_of, cell_size_deg=settings.proximity.index_cell_deg
    )
    window = settings.proximity.online_window_seconds
    try:
        template = build_query(
            settings.proximity,
            origin=GeoPoint(lat=0.0, lon=0.0),
            radius_m=radius_m,
            limit=limit,
            max_age_s=max_age_s,
        )
    except ValueError as e:
        raise _bad_request(e) from e

    lists: list[dict[str, Any]] = []
    for entity_id in index.entity_ids():
        own = index.get(entity_id)
        # Stale entities are offline; they receive no list.
        if own is None or not is_fresh(own, as_of, template.max_age):
            continue
        query = replace(template, origin=own.point, exclude_ids=frozenset([entity_id]))
        result = index.find_nearby(query)
        lists.append(
            {
                "entity_id": entity_id,
                "results": [
                    _item(m, as_of=as_of, online_window_s=window).model_dump(mode="json") for m in result
                ],
            }
        )

    return {
        "generated_at": as_of.isoformat(),
        "entities": len(index),
        "lists": lists,
        "meta": {"debug": {"request_id": uuid.uuid4().hex, "api_ms": int((time.monotonic() - t0) * 1000)}},
    }
