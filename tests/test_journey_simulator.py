import asyncio

import pytest

from autoride.models.domain import GeoPoint, LocationUpdate, RideRequest, RideStatus, Vehicle, VehicleStatus
from autoride.services.dispatch.models import DispatchSession, SessionPhase
from autoride.services.dispatch import simulator as simulator_module
from autoride.services.dispatch.simulator import JourneySimulator, advance_progress
from autoride.services.events.bus import VEHICLE_LOCATIONS, InMemoryEventBus
from autoride.services.events.notifications import ARRIVED_AT_PICKUP, RIDE_COMPLETED
from autoride.services.fleet.registry import FleetRegistry
from autoride.services.routing.models import RouteResult


START = GeoPoint(40.7600, -73.9800)
PICKUP = GeoPoint(40.7589, -73.9851)
DROPOFF = GeoPoint(40.7614, -73.9776)
OWNER = "session-test"


class RecordingSink:
    def __init__(self) -> None:
        self.milestones = []

    def notify(self, milestone, payload):
        self.milestones.append((milestone, payload))


class ExplodingSink:
    def notify(self, milestone, payload):
        raise RuntimeError("sink down")


def _route(origin: GeoPoint, destination: GeoPoint, steps: int = 6) -> RouteResult:
    points = tuple(
        GeoPoint(
            origin.lat + (destination.lat - origin.lat) * i / steps,
            origin.lng + (destination.lng - origin.lng) * i / steps,
        )
        for i in range(steps + 1)
    )
    return RouteResult(points=points, duration_seconds=60.0, source="osrm")


def _setup(notifier=None):
    registry = FleetRegistry([Vehicle(taxi_id="TAXI-1", position=START, speed_kph=20.0)])
    registry.acquire("TAXI-1", OWNER)
    ride = RideRequest(ride_id="ride-1", user_id="user-demo", pickup=PICKUP, dropoff=DROPOFF, status=RideStatus.ASSIGNED)
    session = DispatchSession(
        session_key=OWNER,
        ride=ride,
        vehicle_id="TAXI-1",
        leg1_route=_route(START, PICKUP),
        leg2_route=_route(PICKUP, DROPOFF),
        eta_seconds=60,
    )
    bus = InMemoryEventBus()
    simulator = JourneySimulator(
        registry,
        publisher=bus,
        notifier=notifier if notifier is not None else RecordingSink(),
        tick_interval_seconds=0,
        progress_step=0.02,
        pickup_dwell_seconds=0,
        completion_delay_seconds=0,
    )
    return registry, session, bus, simulator


def test_advance_progress_lands_exactly_on_one() -> None:
    progress = 0.0
    for _ in range(50):
        progress = advance_progress(progress, 0.02)
    assert progress == 1.0
    assert advance_progress(0.99, 0.02) == 1.0


def test_leg_one_arrives_after_fifty_ticks() -> None:
    sink = RecordingSink()
    registry, session, _, simulator = _setup(sink)
    simulator.start_pickup_leg(session)

    previous = session.leg1_progress
    for _ in range(49):
        simulator.step(session)
        assert session.leg1_progress == pytest.approx(previous + 0.02)
        previous = session.leg1_progress
        assert registry.get("TAXI-1").status == VehicleStatus.EN_ROUTE_TO_PICKUP

    assert session.phase is SessionPhase.GOING_TO_PICKUP
    simulator.step(session)

    vehicle = registry.get("TAXI-1")
    assert session.phase is SessionPhase.PICKUP_WAIT
    assert session.leg1_progress == 1.0
    assert vehicle.position == PICKUP
    assert vehicle.status == VehicleStatus.ARRIVED_AT_PICKUP
    assert [milestone for milestone, _ in sink.milestones] == [ARRIVED_AT_PICKUP]


def test_vehicle_follows_route_vertices() -> None:
    registry, session, _, simulator = _setup()
    simulator.start_pickup_leg(session)
    assert registry.get("TAXI-1").position == session.leg1_route.points[0]

    for _ in range(25):
        simulator.step(session)

    # floor(0.5 * 6) == 3
    assert registry.get("TAXI-1").position == session.leg1_route.points[3]


def test_ticking_stops_during_pickup_wait() -> None:
    registry, session, _, simulator = _setup()
    simulator.start_pickup_leg(session)
    for _ in range(50):
        simulator.step(session)
    revision = registry.get("TAXI-1").revision

    simulator.step(session)

    assert session.phase is SessionPhase.PICKUP_WAIT
    assert session.leg2_progress == 0.0
    assert registry.get("TAXI-1").revision == revision


def test_leg_two_requires_pickup_wait() -> None:
    _, session, _, simulator = _setup()
    simulator.start_pickup_leg(session)

    with pytest.raises(RuntimeError):
        simulator.start_destination_leg(session)


def test_leg_two_completes_ride() -> None:
    sink = RecordingSink()
    registry, session, _, simulator = _setup(sink)
    simulator.start_pickup_leg(session)
    for _ in range(50):
        simulator.step(session)

    simulator.start_destination_leg(session)
    assert session.ride.status is RideStatus.ENROUTE
    assert registry.get("TAXI-1").status == VehicleStatus.EN_ROUTE_TO_DESTINATION
    for _ in range(50):
        simulator.step(session)

    vehicle = registry.get("TAXI-1")
    assert session.phase is SessionPhase.COMPLETED
    assert session.ride.status is RideStatus.COMPLETED
    assert vehicle.position == DROPOFF
    assert vehicle.status == VehicleStatus.COMPLETED
    assert [milestone for milestone, _ in sink.milestones] == [ARRIVED_AT_PICKUP, RIDE_COMPLETED]


def test_external_updates_cannot_move_controlled_vehicle() -> None:
    registry, session, _, simulator = _setup()
    simulator.start_pickup_leg(session)
    for _ in range(10):
        simulator.step(session)
    before = registry.snapshot("TAXI-1")

    accepted = registry.apply_update(
        LocationUpdate(taxi_id="TAXI-1", position=GeoPoint(0.0, 0.0), seq=before.seq + 100, status=VehicleStatus.IDLE)
    )

    after = registry.get("TAXI-1")
    assert accepted is False
    assert after.position == before.position
    assert after.status == before.status


def test_closed_session_does_not_tick() -> None:
    registry, session, _, simulator = _setup()
    simulator.start_pickup_leg(session)
    session.closed = True

    simulator.step(session)

    assert session.leg1_progress == 0.0


def test_location_events_are_published_each_tick() -> None:
    _, session, bus, simulator = _setup()
    simulator.start_pickup_leg(session)
    for _ in range(5):
        simulator.step(session)

    events = bus.recent(VEHICLE_LOCATIONS)
    assert len(events) == 6
    assert all(event.key == "TAXI-1" for event in events)
    assert events[-1].payload["status"] == VehicleStatus.EN_ROUTE_TO_PICKUP.value


def test_notification_failures_do_not_stop_the_journey() -> None:
    _, session, _, simulator = _setup(ExplodingSink())
    simulator.start_pickup_leg(session)

    for _ in range(50):
        simulator.step(session)

    assert session.phase is SessionPhase.PICKUP_WAIT


def test_drive_runs_the_whole_journey() -> None:
    registry, session, _, simulator = _setup()
    finished = []

    async def scenario() -> None:
        task = simulator.begin(session, finished.append)
        assert session.task is task
        await task

    asyncio.run(scenario())

    assert finished == [session]
    assert session.phase is SessionPhase.COMPLETED
    assert registry.get("TAXI-1").position == DROPOFF


def test_drive_waits_at_pickup_and_before_finishing(monkeypatch) -> None:
    registry, session, bus, _ = _setup()
    simulator = JourneySimulator(registry, publisher=bus, notifier=RecordingSink())
    timeline = []

    async def fake_sleep(delay):
        timeline.append((delay, session.phase))

    monkeypatch.setattr(simulator_module.asyncio, "sleep", fake_sleep)
    simulator.start_pickup_leg(session)
    asyncio.run(simulator.drive(session, lambda finished: timeline.append(("finished", finished.phase))))

    delays = [delay for delay, _ in timeline[:-1]]
    assert delays == [1.0] * 50 + [3.0] + [1.0] * 50 + [2.0]
    assert timeline[50] == (3.0, SessionPhase.PICKUP_WAIT)
    assert timeline[101] == (2.0, SessionPhase.COMPLETED)
    assert timeline[-1] == ("finished", SessionPhase.COMPLETED)
    assert registry.get("TAXI-1").position == DROPOFF
