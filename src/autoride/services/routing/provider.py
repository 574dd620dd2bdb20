"""Route acquisition with straight-line degradation."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Sequence

import httpx

from ...config import settings
from ...models.domain import GeoPoint
from ..geospatial import distance_km, interpolate
from .models import RouteResult
from .osrm_client import OSRMClient

logger = logging.getLogger(__name__)


class DirectionsClient(Protocol):
    async def directions(self, origin: GeoPoint, destination: GeoPoint) -> tuple[list[GeoPoint], float]:
        ...


def estimate_duration_seconds(distance: float, average_speed_kmh: float | None = None) -> int:
    """Travel time for ``distance`` km at the assumed urban speed, rounded to whole seconds."""

    speed = average_speed_kmh if average_speed_kmh is not None else settings.average_speed_kmh
    return round(distance / speed * 3600)


def straight_line_route(
    origin: GeoPoint,
    destination: GeoPoint,
    average_speed_kmh: float | None = None,
) -> RouteResult:
    return RouteResult(
        points=(origin, destination),
        duration_seconds=estimate_duration_seconds(distance_km(origin, destination), average_speed_kmh),
        source="fallback",
    )


def densify(points: Sequence[GeoPoint], extra_per_segment: int = 2) -> list[GeoPoint]:
    """Insert evenly spaced points between every consecutive pair.

    Endpoints and original vertices are preserved, so path length is unchanged.
    """
    if len(points) < 2:
        return list(points)
    dense: list[GeoPoint] = []
    for start, end in zip(points, points[1:]):
        dense.append(start)
        for k in range(1, extra_per_segment + 1):
            dense.append(interpolate(start, end, k / (extra_per_segment + 1)))
    dense.append(points[-1])
    return dense


class RouteProvider:
    """Acquire a routable polyline, degrading to a straight line on any failure.

    ``route()`` never raises: routing failures are logged and answered with the
    two-point fallback so dispatch and ticking always have something to follow.
    """

    def __init__(
        self,
        client: DirectionsClient | None = None,
        *,
        timeout_seconds: float | None = None,
        average_speed_kmh: float | None = None,
        min_points: int | None = None,
    ) -> None:
        self.client = client
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.routing_timeout_seconds
        self.average_speed_kmh = average_speed_kmh if average_speed_kmh is not None else settings.average_speed_kmh
        self.min_points = min_points if min_points is not None else settings.min_route_points

    @classmethod
    def from_settings(cls) -> "RouteProvider":
        client: DirectionsClient | None = None
        if settings.osrm_base_url:
            client = OSRMClient()
        else:
            logger.info("OSRM base URL not configured; routes will use straight-line estimates")
        return cls(client)

    async def route(self, origin: GeoPoint, destination: GeoPoint) -> RouteResult:
        if self.client is None:
            return self.fallback(origin, destination)

        try:
            coordinates, duration = await asyncio.wait_for(
                self.client.directions(origin, destination),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Routing timed out after {self.timeout_seconds:.1f}s for {origin.as_tuple()} -> "
                f"{destination.as_tuple()}. Using straight-line fallback."
            )
            return self.fallback(origin, destination)
        except (httpx.HTTPError, ConnectionError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Routing request failed: {e}. Using straight-line fallback.")
            return self.fallback(origin, destination)
        except Exception as e:
            logger.error(f"Unexpected routing error: {e}. Using straight-line fallback.")
            return self.fallback(origin, destination)

        points = list(coordinates)
        if len(points) < 2:
            logger.warning("Routing returned fewer than two points. Using straight-line fallback.")
            return self.fallback(origin, destination)
        if len(points) < self.min_points:
            points = densify(points)
        return RouteResult(points=tuple(points), duration_seconds=float(duration), source="osrm")

    def fallback(self, origin: GeoPoint, destination: GeoPoint) -> RouteResult:
        return straight_line_route(origin, destination, self.average_speed_kmh)
