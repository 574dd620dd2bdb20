"""Dispatch orchestration: one active ride from request to teardown."""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from ...config import settings
from ...models.domain import CANCELLABLE_RIDE_STATUSES, GeoPoint, RideRequest, RideStatus, Vehicle, VehicleStatus
from ...persistence.snapshots import SnapshotStore, build_snapshot, load_fresh_snapshot, snapshot_route_points
from ..events.bus import (
    PRICING_UPDATES,
    RIDES_ASSIGNED,
    RIDES_COMPLETED,
    RIDES_REQUESTED,
    VEHICLE_LOCATIONS,
    EventPublisher,
    InMemoryEventBus,
    publish_safely,
    vehicle_location_payload,
)
from ..events.notifications import NotificationSink
from ..fleet.registry import FleetRegistry
from ..routing.models import RouteResult
from ..routing.provider import RouteProvider
from .errors import (
    NoVehicleAvailableError,
    RideInProgressError,
    RideNotCancellableError,
    RideNotFoundError,
)
from .models import DispatchSession, SessionPhase
from .selector import DispatchSelector
from .simulator import JourneySimulator

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "dispatch-session"
METRIC_WINDOW = 500


def percentile(values: list[float], pct: float) -> float:
    """Nearest-rank percentile; 0 for an empty sample."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


@dataclass
class DispatchMetrics:
    active_rides: int = 0
    surge_multiplier: float = 1.0
    eta_samples: deque = field(default_factory=lambda: deque(maxlen=METRIC_WINDOW))
    selection_latencies_ms: deque = field(default_factory=lambda: deque(maxlen=METRIC_WINDOW))

    def ride_started(self) -> None:
        self.active_rides += 1

    def ride_ended(self) -> None:
        self.active_rides = max(0, self.active_rides - 1)

    def record_assignment(self, eta_seconds: int, latency_ms: float) -> None:
        self.eta_samples.append(eta_seconds)
        self.selection_latencies_ms.append(latency_ms)

    @property
    def avg_eta_seconds(self) -> float:
        if not self.eta_samples:
            return 0.0
        return sum(self.eta_samples) / len(self.eta_samples)

    @property
    def assignment_p95_ms(self) -> float:
        return percentile(list(self.selection_latencies_ms), 95)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class DispatchService:
    """Owns the single active ride and its dispatch session.

    ``request_ride`` creates the ride, selects a vehicle while the leg-2 route
    is fetched in parallel, and hands the session to the journey simulator.
    Teardown (completion or cancellation) releases the vehicle lock, clears the
    ride and decrements the active-ride counter in one synchronous step, so no
    tick or feed update can observe a half-reset session.
    """

    def __init__(
        self,
        registry: FleetRegistry,
        selector: DispatchSelector,
        provider: RouteProvider,
        simulator: JourneySimulator,
        *,
        publisher: EventPublisher | None = None,
        notifier: NotificationSink | None = None,
        snapshot_store: SnapshotStore | None = None,
        clock: Callable[[], float] = time.time,
        session_key: str = DEFAULT_SESSION_KEY,
        default_user_id: str | None = None,
        snapshot_max_age_seconds: float | None = None,
    ) -> None:
        self.registry = registry
        self.selector = selector
        self.provider = provider
        self.simulator = simulator
        self.publisher = publisher
        self.notifier = notifier
        self.snapshot_store = snapshot_store
        self.clock = clock
        self.session_key = session_key
        self.default_user_id = default_user_id or settings.default_user_id
        self.snapshot_max_age_seconds = (
            snapshot_max_age_seconds if snapshot_max_age_seconds is not None else settings.snapshot_max_age_seconds
        )
        self.stats = DispatchMetrics()
        self._ride: Optional[RideRequest] = None
        self._session: Optional[DispatchSession] = None

    @classmethod
    def build(
        cls,
        registry: FleetRegistry,
        *,
        provider: RouteProvider | None = None,
        publisher: EventPublisher | None = None,
        notifier: NotificationSink | None = None,
        snapshot_store: SnapshotStore | None = None,
        clock: Callable[[], float] = time.time,
        **simulator_options,
    ) -> "DispatchService":
        """Wire selector and simulator around a shared registry, provider and publisher."""
        provider = provider or RouteProvider.from_settings()
        selector = DispatchSelector(registry, provider)
        simulator = JourneySimulator(registry, publisher=publisher, notifier=notifier, **simulator_options)
        return cls(
            registry,
            selector,
            provider,
            simulator,
            publisher=publisher,
            notifier=notifier,
            snapshot_store=snapshot_store,
            clock=clock,
        )

    @property
    def current_ride(self) -> Optional[RideRequest]:
        return self._ride

    @property
    def active_session(self) -> Optional[DispatchSession]:
        return self._session

    @property
    def phase(self) -> SessionPhase:
        return self._session.phase if self._session is not None else SessionPhase.SELECTING_TAXI

    @property
    def taxi_status(self) -> VehicleStatus:
        return self._session.vehicle_status if self._session is not None else VehicleStatus.IDLE

    def create_request(self, pickup: GeoPoint, dropoff: GeoPoint, user_id: str | None = None) -> RideRequest:
        if self._ride is not None:
            raise RideInProgressError(self._ride.ride_id)
        if self._session is not None:
            raise RideInProgressError(self._session.ride.ride_id)

        ride = RideRequest(
            ride_id=f"ride-{uuid.uuid4().hex[:12]}",
            user_id=user_id or self.default_user_id,
            pickup=pickup,
            dropoff=dropoff,
            surge_multiplier=self.stats.surge_multiplier,
            ts=self.clock(),
        )
        self._ride = ride
        self.stats.ride_started()
        logger.info(f"Ride {ride.ride_id} requested by {ride.user_id}: {pickup.as_tuple()} -> {dropoff.as_tuple()}")
        publish_safely(self.publisher, RIDES_REQUESTED, {**ride.to_dict(), "timestamp": self._now_millis()}, key=ride.ride_id)
        return ride

    async def dispatch(self, ride_id: str) -> Optional[DispatchSession]:
        """Select a vehicle for the pending ride and start its journey.

        Returns None when the ride was cancelled while selection was in flight.
        """
        ride = self._require_ride(ride_id)
        if self._session is not None or ride.status is not RideStatus.REQUESTED:
            raise RideInProgressError(ride_id)

        started = time.perf_counter()
        selection, leg2_route = await asyncio.gather(
            self.selector.select_vehicle(ride.pickup, owner=self.session_key),
            self.provider.route(ride.pickup, ride.dropoff),
        )
        latency_ms = (time.perf_counter() - started) * 1000

        if self._ride is not ride or ride.status is not RideStatus.REQUESTED:
            if selection is not None:
                self.registry.release(selection.vehicle.taxi_id, self.session_key)
                logger.info(f"Ride {ride_id} cancelled during selection; released {selection.vehicle.taxi_id}")
            return None

        if selection is None:
            self._clear_ride(ride, publish=False)
            logger.info(f"Ride {ride_id}: no vehicles available")
            raise NoVehicleAvailableError()

        ride.status = RideStatus.ASSIGNED
        ride.taxi_id = selection.vehicle.taxi_id
        ride.eta_seconds = selection.eta_seconds
        ride.ts = self.clock()
        session = DispatchSession(
            session_key=self.session_key,
            ride=ride,
            vehicle_id=selection.vehicle.taxi_id,
            leg1_route=selection.route,
            leg2_route=leg2_route,
            eta_seconds=selection.eta_seconds,
        )
        self._session = session
        self.stats.record_assignment(selection.eta_seconds, latency_ms)
        publish_safely(
            self.publisher,
            RIDES_ASSIGNED,
            {
                "rideId": ride.ride_id,
                "taxiId": ride.taxi_id,
                "etaSeconds": ride.eta_seconds,
                "surgeMultiplier": ride.surge_multiplier,
                "timestamp": self._now_millis(),
            },
            key=ride.ride_id,
        )
        self._save_snapshot(session)
        self._start(session)
        return session

    async def request_ride(self, pickup: GeoPoint, dropoff: GeoPoint, user_id: str | None = None) -> RideRequest:
        ride = self.create_request(pickup, dropoff, user_id=user_id)
        await self.dispatch(ride.ride_id)
        return ride

    def cancel(self, ride_id: str) -> RideRequest:
        ride = self._require_ride(ride_id)
        if ride.status not in CANCELLABLE_RIDE_STATUSES:
            raise RideNotCancellableError(ride_id, ride.status.value)

        ride.status = RideStatus.CANCELLED
        ride.ts = self.clock()
        session = self._session
        if session is not None and session.ride is ride:
            self._teardown(session)
        else:
            self._clear_ride(ride)
        logger.info(f"Ride {ride_id} cancelled")
        return ride

    def finish(self, session: DispatchSession) -> None:
        """Completion callback for the simulator, fired after the completion delay."""
        self._teardown(session)

    async def recover(self, session_key: str | None = None) -> Optional[DispatchSession]:
        """Resume a persisted session if its snapshot is inside the recovery window.

        Leg 1 restarts from progress 0 at the snapshot's starting point; the
        leg-2 route is recomputed.
        """
        key = session_key or self.session_key
        if self.snapshot_store is None:
            return None
        if self._ride is not None:
            raise RideInProgressError(self._ride.ride_id)

        snapshot = load_fresh_snapshot(
            self.snapshot_store,
            key,
            clock=self.clock,
            max_age_seconds=self.snapshot_max_age_seconds,
        )
        if snapshot is None:
            return None
        if snapshot.ride is None:
            logger.info(f"Snapshot '{key}' carries no ride; discarding")
            self._delete_snapshot(key)
            return None

        taxi_id = snapshot.vehicle.taxi_id
        if taxi_id not in self.registry:
            self.registry.register(
                Vehicle(
                    taxi_id=taxi_id,
                    position=GeoPoint(snapshot.vehicle.lat, snapshot.vehicle.lon),
                    speed_kph=snapshot.vehicle.speed_kph,
                    seq=snapshot.vehicle.seq,
                    heading=snapshot.vehicle.heading,
                )
            )
        if not self.registry.acquire(taxi_id, key):
            logger.warning(f"Cannot recover '{key}': {taxi_id} is controlled by another session")
            self._delete_snapshot(key)
            return None

        ride = RideRequest(
            ride_id=snapshot.ride.ride_id,
            user_id=snapshot.ride.user_id,
            pickup=GeoPoint(snapshot.ride.pickup.lat, snapshot.ride.pickup.lng),
            dropoff=GeoPoint(snapshot.ride.dropoff.lat, snapshot.ride.dropoff.lng),
            status=RideStatus.ASSIGNED,
            taxi_id=taxi_id,
            eta_seconds=snapshot.eta_seconds,
            surge_multiplier=snapshot.ride.surge_multiplier,
            ts=self.clock(),
        )
        self._ride = ride
        self.stats.ride_started()

        leg2_route = await self.provider.route(ride.pickup, ride.dropoff)
        if self._ride is not ride:
            self.registry.release(taxi_id, key)
            return None

        session = DispatchSession(
            session_key=key,
            ride=ride,
            vehicle_id=taxi_id,
            leg1_route=RouteResult(
                points=snapshot_route_points(snapshot),
                duration_seconds=float(snapshot.eta_seconds),
                source="snapshot",
            ),
            leg2_route=leg2_route,
            eta_seconds=snapshot.eta_seconds,
        )
        self._session = session
        logger.info(f"Recovered session '{key}': ride {ride.ride_id} with {taxi_id}, restarting leg 1")
        self._start(session)
        return session

    def set_surge_multiplier(self, value: float, reason: str = "manual") -> float:
        if value < 1.0:
            raise ValueError("Surge multiplier must be at least 1.0.")
        self.stats.surge_multiplier = value
        logger.info(f"Surge multiplier set to {value:.2f} ({reason})")
        publish_safely(
            self.publisher,
            PRICING_UPDATES,
            {"surgeMultiplier": value, "reason": reason, "timestamp": self._now_millis()},
        )
        return value

    def metrics(self) -> dict:
        events_published = self.publisher.published_count if isinstance(self.publisher, InMemoryEventBus) else 0
        return {
            "activeRides": self.stats.active_rides,
            "avgEtaSeconds": round(self.stats.avg_eta_seconds, 1),
            "assignmentP95Ms": round(self.stats.assignment_p95_ms, 1),
            "surgeMultiplier": self.stats.surge_multiplier,
            "eventsPublished": events_published,
        }

    async def shutdown(self) -> None:
        """Stop ticking without tearing down, so the snapshot survives for recovery."""
        session = self._session
        if session is None or session.task is None:
            return
        session.task.cancel()
        try:
            await session.task
        except asyncio.CancelledError:
            pass

    def _start(self, session: DispatchSession) -> None:
        task = self.simulator.begin(session, self.finish)
        task.add_done_callback(lambda done: self._on_task_done(session, done))

    def _on_task_done(self, session: DispatchSession, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and not session.closed:
            logger.error(f"Journey for ride {session.ride.ride_id} failed: {error}", exc_info=error)
            self._teardown(session)

    def _teardown(self, session: DispatchSession) -> None:
        if session.closed:
            return
        session.closed = True
        task = session.task
        if task is not None and task is not _current_task() and not task.done():
            task.cancel()

        if self.registry.release(session.vehicle_id, session.session_key):
            vehicle = self.registry.get(session.vehicle_id)
            publish_safely(self.publisher, VEHICLE_LOCATIONS, vehicle_location_payload(vehicle), key=vehicle.taxi_id)
        if self._session is session:
            self._session = None
        self._delete_snapshot(session.session_key)
        self._clear_ride(session.ride)
        logger.info(f"Session {session.session_key} torn down; ride {session.ride.ride_id} {session.ride.status.value}")

    def _clear_ride(self, ride: RideRequest, *, publish: bool = True) -> None:
        if self._ride is not ride:
            return
        self._ride = None
        self.stats.ride_ended()
        if not publish:
            return
        publish_safely(
            self.publisher,
            RIDES_COMPLETED,
            {
                "rideId": ride.ride_id,
                "taxiId": ride.taxi_id,
                "status": ride.status.value,
                "timestamp": self._now_millis(),
            },
            key=ride.ride_id,
        )

    def _require_ride(self, ride_id: str) -> RideRequest:
        if self._ride is None or self._ride.ride_id != ride_id:
            raise RideNotFoundError(ride_id)
        return self._ride

    def _save_snapshot(self, session: DispatchSession) -> None:
        if self.snapshot_store is None:
            return
        vehicle = self.registry.get(session.vehicle_id)
        try:
            self.snapshot_store.save(session.session_key, build_snapshot(session, vehicle, self.clock()))
        except Exception as e:
            logger.warning(f"Failed to persist snapshot '{session.session_key}': {e}")

    def _delete_snapshot(self, key: str) -> None:
        if self.snapshot_store is None:
            return
        try:
            self.snapshot_store.delete(key)
        except Exception as e:
            logger.warning(f"Failed to delete snapshot '{key}': {e}")

    def _now_millis(self) -> int:
        return int(self.clock() * 1000)
