"""Vehicle scoring and best-fit selection.

Each dispatchable vehicle (IDLE, or ENROUTE and therefore redirectable) is
scored against the pickup point with four independent components:

- distance: ``max(0, 10 - straight-line km to pickup)``
- speed: ``min(speed_kph / 50, 1)``
- status: 2 for IDLE, 1 otherwise
- route efficiency: ``max(0, 5 - routed km to pickup)``

The highest total wins. Ties keep the vehicle that comes first in registry
order, which is deterministic but otherwise arbitrary. The winner's route to
the pickup is reused as the first journey leg.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import DISPATCHABLE_STATUSES, GeoPoint, Vehicle, VehicleStatus
from ..fleet.registry import FleetRegistry
from ..geospatial import distance_km
from ..routing.models import RouteResult
from ..routing.provider import RouteProvider, estimate_duration_seconds
from .models import CandidateScore, SelectedVehicle

logger = logging.getLogger(__name__)

MAX_DISTANCE_SCORE = 10.0
REFERENCE_SPEED_KPH = 50.0
MAX_ROUTE_EFFICIENCY_SCORE = 5.0
IDLE_STATUS_SCORE = 2.0
BUSY_STATUS_SCORE = 1.0


def score_candidate(vehicle: Vehicle, pickup: GeoPoint, route: RouteResult) -> CandidateScore:
    return CandidateScore(
        taxi_id=vehicle.taxi_id,
        distance_score=max(0.0, MAX_DISTANCE_SCORE - distance_km(vehicle.position, pickup)),
        speed_score=min(vehicle.speed_kph / REFERENCE_SPEED_KPH, 1.0),
        status_score=IDLE_STATUS_SCORE if vehicle.status == VehicleStatus.IDLE else BUSY_STATUS_SCORE,
        route_efficiency_score=max(0.0, MAX_ROUTE_EFFICIENCY_SCORE - route.distance_km),
        route=route,
    )


def estimate_eta_seconds(route: RouteResult, average_speed_kmh: float | None = None) -> int:
    """ETA along the route at the assumed urban speed, straight-line when the route is degenerate."""
    length = route.distance_km
    if length > 0:
        return estimate_duration_seconds(length, average_speed_kmh)
    return estimate_duration_seconds(distance_km(route.origin, route.destination), average_speed_kmh)


def is_dispatchable(vehicle: Vehicle) -> bool:
    return vehicle.status in DISPATCHABLE_STATUSES and not vehicle.is_controlled


class DispatchSelector:
    def __init__(
        self,
        registry: FleetRegistry,
        provider: RouteProvider,
        *,
        average_speed_kmh: float | None = None,
    ) -> None:
        self.registry = registry
        self.provider = provider
        self.average_speed_kmh = average_speed_kmh if average_speed_kmh is not None else settings.average_speed_kmh

    def candidates(self) -> list[Vehicle]:
        return [vehicle for vehicle in self.registry.vehicles() if is_dispatchable(vehicle)]

    async def score_candidates(self, pickup: GeoPoint, candidates: Sequence[Vehicle] | None = None) -> list[CandidateScore]:
        """Score candidates in registry order; per-candidate routes are fetched concurrently."""
        vehicles = list(candidates) if candidates is not None else self.candidates()
        if not vehicles:
            return []
        # Freeze start positions so routes and distance scores agree
        starts = [vehicle.position for vehicle in vehicles]
        routes = await asyncio.gather(*(self.provider.route(start, pickup) for start in starts))
        scores = []
        for vehicle, start, route in zip(vehicles, starts, routes):
            frozen = Vehicle(
                taxi_id=vehicle.taxi_id,
                position=start,
                speed_kph=vehicle.speed_kph,
                status=vehicle.status,
                seq=vehicle.seq,
            )
            scores.append(score_candidate(frozen, pickup, route))
        return scores

    async def select_vehicle(self, pickup: GeoPoint, *, owner: str) -> Optional[SelectedVehicle]:
        """Pick the best vehicle for ``pickup`` and take exclusive control of it for ``owner``.

        Returns None when no vehicle is dispatchable.
        """
        candidates = self.candidates()
        if not candidates:
            logger.info(f"No dispatchable vehicles for pickup {pickup.as_tuple()}")
            return None

        scores = await self.score_candidates(pickup, candidates)
        # sorted() is stable, so equal totals keep registry order
        ranked = sorted(scores, key=lambda score: score.total, reverse=True)
        for score in ranked:
            vehicle = self.registry.get(score.taxi_id)
            if vehicle is None or not is_dispatchable(vehicle):
                continue
            if not self.registry.acquire(score.taxi_id, owner):
                continue
            self.registry.move_controlled(
                score.taxi_id,
                owner,
                score.route.origin,
                VehicleStatus.EN_ROUTE_TO_PICKUP,
            )
            eta = estimate_eta_seconds(score.route, self.average_speed_kmh)
            logger.info(
                f"Selected {score.taxi_id} (score {score.total:.2f}, route {score.route.source}, "
                f"{score.route.distance_km:.2f} km, eta {eta}s) out of {len(scores)} candidates"
            )
            return SelectedVehicle(
                vehicle=self.registry.snapshot(score.taxi_id),
                route=score.route,
                eta_seconds=eta,
                score=score,
            )

        logger.info("All scored vehicles became unavailable during selection")
        return None
