"""Fleet seeding and the simulated external location feed."""

from __future__ import annotations

import asyncio
import logging
import math
import random
from typing import Optional

from ...config import settings
from ...models.domain import GeoPoint, LocationUpdate, Vehicle, VehicleStatus
from ..events.bus import VEHICLE_LOCATIONS, EventPublisher, publish_safely, vehicle_location_payload
from .registry import FleetRegistry

logger = logging.getLogger(__name__)

MAX_SEED_SPEED_KPH = 50.0


def seed_fleet(
    registry: FleetRegistry,
    *,
    size: int | None = None,
    center: GeoPoint | None = None,
    spread_degrees: float | None = None,
    rng: random.Random | None = None,
) -> list[Vehicle]:
    """Register ``size`` idle vehicles scattered around ``center``."""
    size = size if size is not None else settings.fleet_size
    center = center or GeoPoint(settings.fleet_center_lat, settings.fleet_center_lng)
    spread = spread_degrees if spread_degrees is not None else settings.fleet_spread_degrees
    rng = rng or random.Random(settings.feed_seed)

    vehicles = []
    for i in range(1, size + 1):
        vehicle = Vehicle(
            taxi_id=f"TAXI-{i}",
            position=GeoPoint(
                lat=center.lat + (rng.random() - 0.5) * spread,
                lng=center.lng + (rng.random() - 0.5) * spread,
            ),
            speed_kph=round(rng.uniform(0.0, MAX_SEED_SPEED_KPH), 1),
            status=VehicleStatus.IDLE,
            heading=rng.uniform(0.0, 360.0),
        )
        registry.register(vehicle)
        vehicles.append(vehicle)
    logger.info(f"Initialized {len(vehicles)} vehicles around {center.as_tuple()}")
    return vehicles


class LocationFeed:
    """Random-walk every vehicle and report positions like an external telemetry feed.

    Updates go through ``FleetRegistry.apply_update`` so vehicles under dispatch
    control are left alone; only accepted updates are published.
    """

    def __init__(
        self,
        registry: FleetRegistry,
        publisher: EventPublisher | None = None,
        *,
        step_degrees: float | None = None,
        interval_seconds: float | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.registry = registry
        self.publisher = publisher
        self.step_degrees = step_degrees if step_degrees is not None else settings.feed_step_degrees
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.feed_interval_seconds
        self.rng = rng or random.Random(settings.feed_seed)
        self._task: Optional[asyncio.Task] = None

    def next_update(self, vehicle: Vehicle) -> LocationUpdate:
        bearing = ((vehicle.heading or 0.0) + (self.rng.random() - 0.5) * 10 + 360) % 360
        radians = math.radians(bearing)
        return LocationUpdate(
            taxi_id=vehicle.taxi_id,
            position=GeoPoint(
                lat=vehicle.position.lat + self.step_degrees * math.cos(radians),
                lng=vehicle.position.lng + self.step_degrees * math.sin(radians),
            ),
            seq=vehicle.seq + 1,
            speed_kph=vehicle.speed_kph,
            status=vehicle.status if vehicle.status in (VehicleStatus.IDLE, VehicleStatus.ENROUTE) else VehicleStatus.IDLE,
            heading=bearing,
        )

    def step(self) -> int:
        """Emit one round of updates; returns how many were accepted."""
        accepted = 0
        for vehicle in self.registry.vehicles():
            if vehicle.is_controlled:
                continue
            update = self.next_update(vehicle)
            if self.registry.apply_update(update):
                accepted += 1
                publish_safely(self.publisher, VEHICLE_LOCATIONS, vehicle_location_payload(vehicle), key=vehicle.taxi_id)
        return accepted

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.step()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
