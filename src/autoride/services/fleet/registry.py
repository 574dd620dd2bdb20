"""In-memory registry of known fleet vehicles."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Optional

from ...models.domain import GeoPoint, LocationUpdate, Vehicle, VehicleStatus

logger = logging.getLogger(__name__)


class FleetRegistry:
    """Holds the current fleet and arbitrates who may write each vehicle record.

    Two writers exist: the external location feed (``apply_update``) and the
    journey simulator of the active dispatch session (``move_controlled``).
    A vehicle acquired by a session rejects feed updates until it is released.
    """

    def __init__(self, vehicles: Iterable[Vehicle] = ()) -> None:
        self._vehicles: dict[str, Vehicle] = {}
        for vehicle in vehicles:
            self.register(vehicle)

    def __len__(self) -> int:
        return len(self._vehicles)

    def __contains__(self, taxi_id: object) -> bool:
        return taxi_id in self._vehicles

    def register(self, vehicle: Vehicle) -> None:
        existing = self._vehicles.get(vehicle.taxi_id)
        if existing is not None and existing.is_controlled:
            raise ValueError(f"Vehicle {vehicle.taxi_id} is under dispatch control and cannot be replaced.")
        self._vehicles[vehicle.taxi_id] = vehicle

    def get(self, taxi_id: str) -> Optional[Vehicle]:
        return self._vehicles.get(taxi_id)

    def vehicles(self) -> list[Vehicle]:
        """Vehicles in registration order."""
        return list(self._vehicles.values())

    def snapshot(self, taxi_id: str) -> Optional[Vehicle]:
        """Detached copy of a vehicle record, safe to hand to other components."""
        vehicle = self._vehicles.get(taxi_id)
        return replace(vehicle) if vehicle is not None else None

    def apply_update(self, update: LocationUpdate) -> bool:
        """Apply an external location report.

        Returns False when the report was discarded: the vehicle is under
        dispatch control, or the report is not newer than the stored record.
        Unknown vehicles are registered on their first report.
        """
        vehicle = self._vehicles.get(update.taxi_id)
        if vehicle is None:
            self._vehicles[update.taxi_id] = Vehicle(
                taxi_id=update.taxi_id,
                position=update.position,
                speed_kph=max(0.0, update.speed_kph),
                status=update.status,
                seq=update.seq,
                heading=update.heading,
            )
            return True
        if vehicle.is_controlled:
            logger.debug(f"Ignoring feed update for {update.taxi_id}: controlled by {vehicle.controlled_by}")
            return False
        if update.seq <= vehicle.seq:
            logger.debug(f"Ignoring stale update for {update.taxi_id}: seq {update.seq} <= {vehicle.seq}")
            return False
        vehicle.position = update.position
        vehicle.speed_kph = max(0.0, update.speed_kph)
        vehicle.status = update.status
        vehicle.seq = update.seq
        vehicle.revision += 1
        vehicle.heading = update.heading
        return True

    def acquire(self, taxi_id: str, owner: str) -> bool:
        """Take exclusive control of a vehicle for a dispatch session."""
        vehicle = self._vehicles.get(taxi_id)
        if vehicle is None:
            return False
        if vehicle.controlled_by is not None and vehicle.controlled_by != owner:
            return False
        vehicle.controlled_by = owner
        return True

    def release(self, taxi_id: str, owner: str, *, status: VehicleStatus = VehicleStatus.IDLE) -> bool:
        """Hand a vehicle back to the external feed, resetting its status."""
        vehicle = self._vehicles.get(taxi_id)
        if vehicle is None or vehicle.controlled_by != owner:
            return False
        vehicle.status = status
        vehicle.speed_kph = 0.0
        vehicle.revision += 1
        vehicle.controlled_by = None
        return True

    def move_controlled(
        self,
        taxi_id: str,
        owner: str,
        position: GeoPoint,
        status: VehicleStatus,
        *,
        speed_kph: float | None = None,
        heading: float | None = None,
    ) -> Vehicle:
        """Write position/status on behalf of the owning session."""
        vehicle = self._vehicles.get(taxi_id)
        if vehicle is None:
            raise KeyError(taxi_id)
        if vehicle.controlled_by != owner:
            raise PermissionError(f"Vehicle {taxi_id} is not controlled by session {owner}.")
        vehicle.position = position
        vehicle.status = status
        if speed_kph is not None:
            vehicle.speed_kph = max(0.0, speed_kph)
        if heading is not None:
            vehicle.heading = heading
        vehicle.revision += 1
        return vehicle
