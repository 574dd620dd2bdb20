"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

from ..models.domain import GeoPoint

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points."""

    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def route_length_km(points: Sequence[GeoPoint]) -> float:
    """Sum of consecutive-pair distances; 0 for fewer than two points."""

    if len(points) < 2:
        return 0.0
    return sum(distance_km(points[i], points[i + 1]) for i in range(len(points) - 1))


def point_at(route: Sequence[GeoPoint], progress: float) -> GeoPoint:
    """Return the route vertex reached at ``progress`` (expected in [0, 1]).

    Stepping is vertex-based: ``route[floor(progress * (len(route) - 1))]``.
    """

    if not route:
        raise ValueError("Route must contain at least one point.")
    if len(route) == 1:
        return route[0]
    index = math.floor(progress * (len(route) - 1))
    return route[min(max(index, 0), len(route) - 1)]


def interpolate(a: GeoPoint, b: GeoPoint, fraction: float) -> GeoPoint:
    """Linear interpolation between two points."""

    return GeoPoint(
        lat=a.lat + (b.lat - a.lat) * fraction,
        lng=a.lng + (b.lng - a.lng) * fraction,
    )


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the initial bearing from (lat1, lon1) to (lat2, lon2)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)
    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360
