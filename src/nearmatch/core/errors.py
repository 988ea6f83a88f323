"""
Domain errors.

Both errors subclass `ValueError` so request layers can treat them like any other
validation failure (HTTP 400) without importing this module.
"""

from __future__ import annotations


class ProximityError(ValueError):
    """Base class for geo/proximity validation failures."""

    code = "PROXIMITY_ERROR"


class InvalidCoordinate(ProximityError):
    """A latitude/longitude outside its valid range, or a non-numeric coordinate."""

    code = "INVALID_COORDINATE"


class InvalidQuery(ProximityError):
    """A proximity query with a non-positive radius, limit or max age (or above configured maxima)."""

    code = "INVALID_QUERY"
