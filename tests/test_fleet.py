import asyncio
import random

import pytest

from autoride.models.domain import GeoPoint, LocationUpdate, Vehicle, VehicleStatus
from autoride.services.events.bus import VEHICLE_LOCATIONS, InMemoryEventBus
from autoride.services.fleet.feed import LocationFeed, seed_fleet
from autoride.services.fleet.registry import FleetRegistry


def _vehicle(taxi_id: str = "TAXI-1", lat: float = 40.76, lng: float = -73.98, seq: int = 0) -> Vehicle:
    return Vehicle(taxi_id=taxi_id, position=GeoPoint(lat, lng), speed_kph=20.0, seq=seq)


def _update(taxi_id: str = "TAXI-1", seq: int = 1, lat: float = 40.77) -> LocationUpdate:
    return LocationUpdate(taxi_id=taxi_id, position=GeoPoint(lat, -73.99), seq=seq, speed_kph=35.0, status=VehicleStatus.ENROUTE)


def test_apply_update_requires_newer_sequence() -> None:
    registry = FleetRegistry([_vehicle(seq=5)])

    assert registry.apply_update(_update(seq=5)) is False
    assert registry.apply_update(_update(seq=3)) is False
    assert registry.get("TAXI-1").position == GeoPoint(40.76, -73.98)

    assert registry.apply_update(_update(seq=6)) is True
    vehicle = registry.get("TAXI-1")
    assert vehicle.position == GeoPoint(40.77, -73.99)
    assert vehicle.status == VehicleStatus.ENROUTE
    assert vehicle.seq == 6


def test_apply_update_registers_unknown_vehicle() -> None:
    registry = FleetRegistry()

    assert registry.apply_update(_update(taxi_id="TAXI-9", seq=1)) is True
    assert "TAXI-9" in registry
    assert len(registry) == 1


def test_controlled_vehicle_rejects_external_updates() -> None:
    registry = FleetRegistry([_vehicle()])
    assert registry.acquire("TAXI-1", "session-a") is True

    assert registry.apply_update(_update(seq=100)) is False
    vehicle = registry.get("TAXI-1")
    assert vehicle.position == GeoPoint(40.76, -73.98)
    assert vehicle.status == VehicleStatus.IDLE


def test_acquire_is_exclusive_per_owner() -> None:
    registry = FleetRegistry([_vehicle()])

    assert registry.acquire("TAXI-1", "session-a") is True
    assert registry.acquire("TAXI-1", "session-a") is True
    assert registry.acquire("TAXI-1", "session-b") is False
    assert registry.acquire("TAXI-404", "session-a") is False


def test_move_controlled_checks_owner() -> None:
    registry = FleetRegistry([_vehicle()])
    registry.acquire("TAXI-1", "session-a")

    moved = registry.move_controlled("TAXI-1", "session-a", GeoPoint(40.75, -73.97), VehicleStatus.EN_ROUTE_TO_PICKUP)
    assert moved.status == VehicleStatus.EN_ROUTE_TO_PICKUP
    assert moved.seq == 0
    assert moved.revision == 1

    with pytest.raises(PermissionError):
        registry.move_controlled("TAXI-1", "session-b", GeoPoint(0, 0), VehicleStatus.IDLE)
    with pytest.raises(KeyError):
        registry.move_controlled("TAXI-404", "session-a", GeoPoint(0, 0), VehicleStatus.IDLE)


def test_release_returns_vehicle_to_feed() -> None:
    registry = FleetRegistry([_vehicle()])
    registry.acquire("TAXI-1", "session-a")
    registry.move_controlled("TAXI-1", "session-a", GeoPoint(40.75, -73.97), VehicleStatus.EN_ROUTE_TO_PICKUP)

    assert registry.release("TAXI-1", "session-b") is False
    assert registry.release("TAXI-1", "session-a") is True

    vehicle = registry.get("TAXI-1")
    assert vehicle.status == VehicleStatus.IDLE
    assert vehicle.speed_kph == 0.0
    assert not vehicle.is_controlled
    assert registry.apply_update(_update(seq=vehicle.seq + 1)) is True


def test_register_refuses_to_replace_controlled_vehicle() -> None:
    registry = FleetRegistry([_vehicle()])
    registry.acquire("TAXI-1", "session-a")

    with pytest.raises(ValueError):
        registry.register(_vehicle())


def test_snapshot_is_detached() -> None:
    registry = FleetRegistry([_vehicle()])

    copy = registry.snapshot("TAXI-1")
    copy.status = VehicleStatus.OFFLINE

    assert registry.get("TAXI-1").status == VehicleStatus.IDLE
    assert registry.snapshot("missing") is None


def test_seed_fleet_scatters_idle_vehicles() -> None:
    registry = FleetRegistry()
    center = GeoPoint(40.7589, -73.9851)

    vehicles = seed_fleet(registry, size=10, center=center, spread_degrees=0.1, rng=random.Random(7))

    assert [v.taxi_id for v in vehicles] == [f"TAXI-{i}" for i in range(1, 11)]
    assert len(registry) == 10
    for vehicle in vehicles:
        assert vehicle.status == VehicleStatus.IDLE
        assert 0.0 <= vehicle.speed_kph <= 50.0
        assert abs(vehicle.position.lat - center.lat) <= 0.05
        assert abs(vehicle.position.lng - center.lng) <= 0.05


def test_location_feed_skips_controlled_vehicles_and_publishes() -> None:
    registry = FleetRegistry([_vehicle("TAXI-1"), _vehicle("TAXI-2", lat=40.75)])
    registry.acquire("TAXI-2", "session-a")
    bus = InMemoryEventBus()
    feed = LocationFeed(registry, bus, step_degrees=0.0001, rng=random.Random(1))

    accepted = feed.step()

    assert accepted == 1
    assert registry.get("TAXI-1").seq == 1
    assert registry.get("TAXI-1").position != GeoPoint(40.76, -73.98)
    assert registry.get("TAXI-2").position == GeoPoint(40.75, -73.98)
    events = bus.recent(VEHICLE_LOCATIONS)
    assert len(events) == 1
    assert events[0].payload["taxiId"] == "TAXI-1"
    assert events[0].payload["seq"] == 1
    assert "timestamp" in events[0].payload


def test_location_feed_step_size() -> None:
    vehicle = _vehicle()
    vehicle.heading = 90.0
    feed = LocationFeed(FleetRegistry([vehicle]), step_degrees=0.0001, rng=random.Random(3))

    update = feed.next_update(vehicle)

    moved = ((update.position.lat - 40.76) ** 2 + (update.position.lng + 73.98) ** 2) ** 0.5
    assert moved == pytest.approx(0.0001)
    assert abs(update.heading - 90.0) <= 5.0
    assert update.seq == vehicle.seq + 1


def test_location_feed_runs_until_stopped() -> None:
    registry = FleetRegistry([_vehicle()])
    feed = LocationFeed(registry, interval_seconds=0.001, rng=random.Random(2))

    async def scenario() -> None:
        feed.start()
        await asyncio.sleep(0.05)
        await feed.stop()

    asyncio.run(scenario())

    assert registry.get("TAXI-1").seq >= 1
