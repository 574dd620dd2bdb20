"""Fleet request/response schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.domain import Vehicle, VehicleStatus


class VehicleModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    taxi_id: str = Field(..., alias="taxiId")
    lat: float
    lon: float
    speed_kph: float = Field(..., alias="speedKph")
    status: VehicleStatus
    seq: int
    revision: int = 0
    heading: Optional[float] = None
    controlled: bool = False

    @classmethod
    def from_vehicle(cls, vehicle: Vehicle) -> "VehicleModel":
        return cls.model_validate({**vehicle.to_dict(), "controlled": vehicle.is_controlled})


class LocationUpdateRequest(BaseModel):
    """An external position report for one vehicle."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    seq: int = Field(..., ge=0)
    speed_kph: float = Field(0.0, ge=0.0)
    status: VehicleStatus = VehicleStatus.IDLE
    heading: Optional[float] = Field(default=None, ge=0.0, lt=360.0)


class LocationUpdateResponse(BaseModel):
    accepted: bool
    vehicle: Optional[VehicleModel] = None
