"""Ride, pricing and metrics request/response schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.domain import GeoPoint, RideRequest
from .sessions import PointModel


class RideRequestModel(BaseModel):
    pickup: PointModel
    dropoff: PointModel
    user_id: Optional[str] = Field(default=None, description="Requesting user; defaults to the demo user.")

    def pickup_point(self) -> GeoPoint:
        return GeoPoint(lat=self.pickup.lat, lng=self.pickup.lng)

    def dropoff_point(self) -> GeoPoint:
        return GeoPoint(lat=self.dropoff.lat, lng=self.dropoff.lng)


class RideResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ride_id: str = Field(..., alias="rideId")
    user_id: str = Field(..., alias="userId")
    pickup: PointModel
    dropoff: PointModel
    status: str
    taxi_id: Optional[str] = Field(default=None, alias="taxiId")
    eta_seconds: int = Field(0, alias="etaSeconds")
    surge_multiplier: float = Field(1.0, alias="surgeMultiplier")

    @classmethod
    def from_ride(cls, ride: RideRequest) -> "RideResponse":
        return cls.model_validate(ride.to_dict())


class SessionStateModel(BaseModel):
    """Current dispatch state as shown to viewers."""

    model_config = ConfigDict(populate_by_name=True)

    phase: str
    taxi_status: str = Field(..., alias="taxiStatus")
    ride: Optional[RideResponse] = None
    taxi_id: Optional[str] = Field(default=None, alias="taxiId")
    leg1_progress: float = Field(0.0, alias="leg1Progress")
    leg2_progress: float = Field(0.0, alias="leg2Progress")
    leg1_route: List[PointModel] = Field(default_factory=list, alias="leg1Route")
    leg2_route: List[PointModel] = Field(default_factory=list, alias="leg2Route")


class SurgeUpdateRequest(BaseModel):
    surge_multiplier: float = Field(..., ge=1.0)
    reason: str = "manual"


class SurgeUpdateResponse(BaseModel):
    surge_multiplier: float
    reason: str


class MetricsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    active_rides: int = Field(..., alias="activeRides")
    avg_eta_seconds: float = Field(..., alias="avgEtaSeconds")
    assignment_p95_ms: float = Field(..., alias="assignmentP95Ms")
    surge_multiplier: float = Field(..., alias="surgeMultiplier")
    events_published: int = Field(..., alias="eventsPublished")
