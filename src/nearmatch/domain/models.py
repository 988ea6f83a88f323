"""
Request/response payloads (Pydantic).

These types are the JSON contract of the HTTP layer. They are converted to the core's
frozen dataclasses (`GeoPoint`, `LocationReport`, `ProximityQuery`) at the route boundary.
Coordinates sent as numeric text (as mobile clients commonly do) are coerced here, once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator

EntityIdIn = Union[int, str]


class GeoPointIn(BaseModel):
    """A geographic point in decimal degrees."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class LocationUpdate(BaseModel):
    """A live location update pushed by a client."""

    entity_id: EntityIdIn
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)
    observed_at: datetime | None = None

    @field_validator("entity_id")
    @classmethod
    def _strip_entity_id(cls, v: EntityIdIn) -> EntityIdIn:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("entity_id must not be empty")
        return v


class NearbyRequest(BaseModel):
    """Find entities near `origin`.

    `reports` is optional: when omitted, the server's registry of live locations is used.
    Reports are kept as raw objects so one malformed entry is skipped instead of failing
    the whole request.
    """

    origin: GeoPointIn
    radius_m: float | None = None
    limit: int | None = None
    max_age_s: float | None = None
    exclude_ids: list[EntityIdIn] = Field(default_factory=list)
    as_of: datetime | None = None
    reports: list[Any] | None = None


class NearbyItem(BaseModel):
    entity_id: EntityIdIn
    distance_m: float = Field(..., ge=0)
    location: GeoPointIn
    accuracy_m: float | None = None
    last_seen: datetime
    is_online: bool = False


class NearbyResponse(BaseModel):
    generated_at: datetime
    radius_m: float
    limit: int
    results: list[NearbyItem]
    meta: dict[str, Any] = Field(default_factory=dict)
