"""Fleet listing and external location updates."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from ...models.domain import GeoPoint, LocationUpdate
from ...schemas.fleet import LocationUpdateRequest, LocationUpdateResponse, VehicleModel
from ...services.events.bus import VEHICLE_LOCATIONS, InMemoryEventBus, publish_safely, vehicle_location_payload
from ...services.fleet.registry import FleetRegistry
from ..dependencies import get_event_bus, get_registry

router = APIRouter(prefix="/fleet", tags=["fleet"])


@router.get("/vehicles", response_model=List[VehicleModel], status_code=status.HTTP_200_OK)
async def list_vehicles(registry: FleetRegistry = Depends(get_registry)) -> List[VehicleModel]:
    return [VehicleModel.from_vehicle(vehicle) for vehicle in registry.vehicles()]


@router.post(
    "/vehicles/{taxi_id}/location",
    response_model=LocationUpdateResponse,
    status_code=status.HTTP_200_OK,
)
async def report_location(
    taxi_id: str,
    payload: LocationUpdateRequest,
    registry: FleetRegistry = Depends(get_registry),
    bus: InMemoryEventBus = Depends(get_event_bus),
) -> LocationUpdateResponse:
    """Apply an external position report; reports for dispatch-controlled or out-of-order updates are ignored."""
    accepted = registry.apply_update(
        LocationUpdate(
            taxi_id=taxi_id,
            position=GeoPoint(lat=payload.lat, lng=payload.lon),
            seq=payload.seq,
            speed_kph=payload.speed_kph,
            status=payload.status,
            heading=payload.heading,
        )
    )
    vehicle = registry.get(taxi_id)
    if accepted:
        publish_safely(bus, VEHICLE_LOCATIONS, vehicle_location_payload(vehicle), key=taxi_id)
    return LocationUpdateResponse(
        accepted=accepted,
        vehicle=VehicleModel.from_vehicle(vehicle) if vehicle is not None else None,
    )
