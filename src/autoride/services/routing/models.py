"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ...models.domain import GeoPoint
from ..geospatial import route_length_km

RouteSource = Literal["osrm", "fallback", "snapshot"]


@dataclass(frozen=True, slots=True)
class RouteResult:
    """A traversable path for one leg; immutable once computed."""

    points: tuple[GeoPoint, ...]
    duration_seconds: float
    source: RouteSource

    def __post_init__(self) -> None:
        if len(self.points) < 2:
            raise ValueError("A route needs at least two points.")

    @property
    def origin(self) -> GeoPoint:
        return self.points[0]

    @property
    def destination(self) -> GeoPoint:
        return self.points[-1]

    @property
    def distance_km(self) -> float:
        return route_length_km(self.points)

    def to_coordinates(self) -> list[dict[str, float]]:
        return [point.to_dict() for point in self.points]
