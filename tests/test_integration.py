import asyncio
from pathlib import Path

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from autoride.api.routes.stream import _stop_forwarder
from autoride.main import create_app
from autoride.models.domain import GeoPoint, Vehicle, VehicleStatus
from autoride.persistence.snapshots import FileSnapshotStore
from autoride.services.dispatch.service import DispatchService
from autoride.services.events.bus import InMemoryEventBus
from autoride.services.fleet.registry import FleetRegistry
from autoride.services.routing.provider import RouteProvider


RIDE_PAYLOAD = {
    "pickup": {"lat": 40.7589, "lng": -73.9851},
    "dropoff": {"lat": 40.7614, "lng": -73.9776},
}


def _build(tmp_path: Path, vehicles) -> tuple[TestClient, DispatchService]:
    registry = FleetRegistry(vehicles)
    bus = InMemoryEventBus()
    service = DispatchService.build(
        registry,
        provider=RouteProvider(None),
        publisher=bus,
        snapshot_store=FileSnapshotStore(root=tmp_path),
        # Keep the journey parked on leg 1 so requests observe a stable state
        tick_interval_seconds=3600,
        pickup_dwell_seconds=0,
        completion_delay_seconds=0,
    )
    app = create_app(dispatch=service, event_bus=bus, seed=False)
    return TestClient(app), service


@pytest.fixture
def api(tmp_path: Path):
    client, service = _build(tmp_path, [Vehicle(taxi_id="TAXI-1", position=GeoPoint(40.7600, -73.9800), speed_kph=20.0)])
    with client:
        yield client, service


def test_health_endpoints(api) -> None:
    client, _ = api

    assert client.get("/").json()["status"] == "running"
    assert client.get("/api/health").json() == {"status": "ok"}
    osrm = client.get("/api/health/osrm").json()
    assert osrm["service"] == "osrm"
    assert osrm["healthy"] is False


def test_fleet_listing_and_location_updates(api) -> None:
    client, _ = api

    vehicles = client.get("/api/fleet/vehicles").json()
    assert [v["taxiId"] for v in vehicles] == ["TAXI-1"]
    assert vehicles[0]["status"] == "IDLE"

    response = client.post("/api/fleet/vehicles/TAXI-1/location", json={"lat": 40.761, "lon": -73.981, "seq": 1})
    assert response.status_code == 200
    assert response.json()["accepted"] is True
    assert response.json()["vehicle"]["lat"] == 40.761

    stale = client.post("/api/fleet/vehicles/TAXI-1/location", json={"lat": 40.0, "lon": -74.0, "seq": 1})
    assert stale.json()["accepted"] is False


def test_ride_lifecycle_over_http(api) -> None:
    client, service = api

    created = client.post("/api/rides", json=RIDE_PAYLOAD)
    assert created.status_code == 201
    ride = created.json()
    assert ride["status"] == "ASSIGNED"
    assert ride["taxiId"] == "TAXI-1"
    assert ride["userId"] == "user-demo"
    assert ride["etaSeconds"] > 0

    current = client.get("/api/rides/current").json()
    assert current["phase"] == "GOING_TO_PICKUP"
    assert current["taxiStatus"] == "EN_ROUTE_TO_PICKUP"
    assert current["leg1Route"][0] == {"lat": 40.7600, "lng": -73.9800}
    assert current["leg1Route"][-1] == RIDE_PAYLOAD["pickup"]

    # The controlled vehicle ignores the external feed
    update = client.post("/api/fleet/vehicles/TAXI-1/location", json={"lat": 40.0, "lon": -74.0, "seq": 999})
    assert update.json()["accepted"] is False

    conflict = client.post("/api/rides", json=RIDE_PAYLOAD)
    assert conflict.status_code == 409

    assert client.get("/api/metrics").json()["activeRides"] == 1

    cancelled = client.post(f"/api/rides/{ride['rideId']}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    current = client.get("/api/rides/current").json()
    assert current["phase"] == "SELECTING_TAXI"
    assert current["taxiStatus"] == "IDLE"
    assert current["ride"] is None
    assert client.get("/api/metrics").json()["activeRides"] == 0
    assert service.registry.get("TAXI-1").status == VehicleStatus.IDLE


def test_cancel_unknown_ride_returns_404(api) -> None:
    client, _ = api

    assert client.post("/api/rides/ride-missing/cancel").status_code == 404


def test_no_vehicle_available_returns_404(tmp_path: Path) -> None:
    client, service = _build(tmp_path, [])
    with client:
        response = client.post("/api/rides", json=RIDE_PAYLOAD)

    assert response.status_code == 404
    assert "No vehicles" in response.json()["detail"]
    assert service.current_ride is None


def test_invalid_ride_payload_returns_422(api) -> None:
    client, _ = api

    response = client.post("/api/rides", json={"pickup": {"lat": 123, "lng": 0}, "dropoff": RIDE_PAYLOAD["dropoff"]})

    assert response.status_code == 422


def test_surge_pricing(api) -> None:
    client, _ = api

    response = client.post("/api/pricing/surge", json={"surge_multiplier": 1.5, "reason": "concert"})
    assert response.status_code == 200
    assert client.get("/api/metrics").json()["surgeMultiplier"] == 1.5

    ride = client.post("/api/rides", json=RIDE_PAYLOAD).json()
    assert ride["surgeMultiplier"] == 1.5

    assert client.post("/api/pricing/surge", json={"surge_multiplier": 0.5}).status_code == 422


def test_vehicle_stream_relays_location_events(api) -> None:
    client, _ = api

    with client.websocket_connect("/api/stream/vehicles") as websocket:
        snapshot = websocket.receive_json()
        assert snapshot["type"] == "snapshot"
        assert snapshot["vehicles"][0]["taxiId"] == "TAXI-1"

        client.post("/api/fleet/vehicles/TAXI-1/location", json={"lat": 40.762, "lon": -73.982, "seq": 5})
        message = websocket.receive_json()

    assert message["type"] == "location"
    assert message["payload"]["taxiId"] == "TAXI-1"
    assert message["payload"]["seq"] == 5
    assert message["payload"]["revision"] >= 1


def test_stream_forwarder_shutdown_collects_send_failures() -> None:
    async def failed_send():
        raise WebSocketDisconnect(code=1006)

    async def scenario():
        failed = asyncio.create_task(failed_send())
        idle = asyncio.create_task(asyncio.Event().wait())
        await asyncio.sleep(0)
        assert failed.done()

        await _stop_forwarder(failed)
        await _stop_forwarder(idle)
        return failed, idle

    failed, idle = asyncio.run(scenario())

    assert isinstance(failed.exception(), WebSocketDisconnect)
    assert idle.cancelled()
