"""Dispatch session and selection models."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ...models.domain import RideRequest, Vehicle, VehicleStatus
from ..routing.models import RouteResult


class SessionPhase(str, Enum):
    SELECTING_TAXI = "SELECTING_TAXI"
    GOING_TO_PICKUP = "GOING_TO_PICKUP"
    PICKUP_WAIT = "PICKUP_WAIT"
    GOING_TO_DESTINATION = "GOING_TO_DESTINATION"
    COMPLETED = "COMPLETED"


PHASE_VEHICLE_STATUS: dict[SessionPhase, VehicleStatus] = {
    SessionPhase.SELECTING_TAXI: VehicleStatus.IDLE,
    SessionPhase.GOING_TO_PICKUP: VehicleStatus.EN_ROUTE_TO_PICKUP,
    SessionPhase.PICKUP_WAIT: VehicleStatus.ARRIVED_AT_PICKUP,
    SessionPhase.GOING_TO_DESTINATION: VehicleStatus.EN_ROUTE_TO_DESTINATION,
    SessionPhase.COMPLETED: VehicleStatus.COMPLETED,
}


@dataclass(slots=True)
class CandidateScore:
    taxi_id: str
    distance_score: float
    speed_score: float
    status_score: float
    route_efficiency_score: float
    route: RouteResult

    @property
    def total(self) -> float:
        return self.distance_score + self.speed_score + self.status_score + self.route_efficiency_score

    def to_dict(self) -> dict:
        return {
            "taxiId": self.taxi_id,
            "distanceScore": self.distance_score,
            "speedScore": self.speed_score,
            "statusScore": self.status_score,
            "routeEfficiencyScore": self.route_efficiency_score,
            "total": self.total,
        }


@dataclass(slots=True)
class SelectedVehicle:
    vehicle: Vehicle
    route: RouteResult
    eta_seconds: int
    score: CandidateScore


@dataclass(eq=False)
class DispatchSession:
    """The single active request-to-completion lifecycle.

    ``task`` is the handle of the coroutine currently driving the journey;
    teardown cancels it directly.
    """

    session_key: str
    ride: RideRequest
    vehicle_id: str
    leg1_route: RouteResult
    leg2_route: RouteResult
    eta_seconds: int
    leg1_progress: float = 0.0
    leg2_progress: float = 0.0
    phase: SessionPhase = SessionPhase.SELECTING_TAXI
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    closed: bool = False

    @property
    def vehicle_status(self) -> VehicleStatus:
        return PHASE_VEHICLE_STATUS[self.phase]

    def to_dict(self) -> dict:
        return {
            "sessionKey": self.session_key,
            "rideId": self.ride.ride_id,
            "taxiId": self.vehicle_id,
            "phase": self.phase.value,
            "taxiStatus": self.vehicle_status.value,
            "etaSeconds": self.eta_seconds,
            "leg1Progress": self.leg1_progress,
            "leg2Progress": self.leg2_progress,
            "leg1Route": self.leg1_route.to_coordinates(),
            "leg2Route": self.leg2_route.to_coordinates(),
        }
