"""Persisted dispatch session snapshot schema."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PointModel(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class SnapshotVehicle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    taxi_id: str = Field(..., alias="taxiId")
    lat: float
    lon: float
    speed_kph: float = Field(0.0, alias="speedKph")
    status: str = "IDLE"
    seq: int = 0
    heading: Optional[float] = None


class SnapshotRide(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ride_id: str = Field(..., alias="rideId")
    user_id: str = Field(..., alias="userId")
    pickup: PointModel
    dropoff: PointModel
    surge_multiplier: float = Field(1.0, ge=1.0, alias="surgeMultiplier")


class SessionSnapshotModel(BaseModel):
    """``{vehicle, etaSeconds, leg1Route, timestampMillis}`` plus the ride being served."""

    model_config = ConfigDict(populate_by_name=True)

    vehicle: SnapshotVehicle
    eta_seconds: int = Field(..., ge=0, alias="etaSeconds")
    leg1_route: List[PointModel] = Field(..., min_length=2, alias="leg1Route")
    timestamp_millis: int = Field(..., ge=0, alias="timestampMillis")
    ride: Optional[SnapshotRide] = None
