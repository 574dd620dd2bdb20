"""Tick-driven journey simulation for the vehicle under dispatch control.

Phases advance strictly in order::

    GOING_TO_PICKUP -> PICKUP_WAIT -> GOING_TO_DESTINATION -> COMPLETED

Each tick adds a fixed progress step to the current leg and moves the vehicle
to ``point_at(leg_route, progress)``. The number of ticks per leg is therefore
independent of the real route length.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ...config import settings
from ...models.domain import GeoPoint, RideStatus
from ..events.bus import VEHICLE_LOCATIONS, EventPublisher, publish_safely, vehicle_location_payload
from ..events.notifications import ARRIVED_AT_PICKUP, RIDE_COMPLETED, NotificationSink, notify_safely
from ..fleet.registry import FleetRegistry
from ..geospatial import bearing_degrees, point_at
from .models import DispatchSession, SessionPhase

logger = logging.getLogger(__name__)

SessionCallback = Callable[[DispatchSession], None]


def advance_progress(progress: float, step: float) -> float:
    # Rounding keeps 1/step ticks landing exactly on 1.0
    return min(1.0, round(progress + step, 10))


class JourneySimulator:
    def __init__(
        self,
        registry: FleetRegistry,
        *,
        publisher: EventPublisher | None = None,
        notifier: NotificationSink | None = None,
        tick_interval_seconds: float | None = None,
        progress_step: float | None = None,
        pickup_dwell_seconds: float | None = None,
        completion_delay_seconds: float | None = None,
    ) -> None:
        self.registry = registry
        self.publisher = publisher
        self.notifier = notifier
        self.tick_interval_seconds = (
            tick_interval_seconds if tick_interval_seconds is not None else settings.tick_interval_seconds
        )
        self.progress_step = progress_step if progress_step is not None else settings.progress_step
        self.pickup_dwell_seconds = (
            pickup_dwell_seconds if pickup_dwell_seconds is not None else settings.pickup_dwell_seconds
        )
        self.completion_delay_seconds = (
            completion_delay_seconds if completion_delay_seconds is not None else settings.completion_delay_seconds
        )

    def begin(self, session: DispatchSession, on_finished: SessionCallback) -> asyncio.Task:
        """Start leg 1 and schedule the coroutine that drives the rest of the journey."""
        self.start_pickup_leg(session)
        session.task = asyncio.create_task(self.drive(session, on_finished))
        return session.task

    def start_pickup_leg(self, session: DispatchSession) -> None:
        session.phase = SessionPhase.GOING_TO_PICKUP
        session.leg1_progress = 0.0
        self._move(session, session.leg1_route.origin)
        logger.info(f"Session {session.session_key}: {session.vehicle_id} heading to pickup")

    def start_destination_leg(self, session: DispatchSession) -> None:
        if session.phase is not SessionPhase.PICKUP_WAIT:
            raise RuntimeError(f"Cannot start leg 2 from phase {session.phase.value}.")
        session.phase = SessionPhase.GOING_TO_DESTINATION
        session.leg2_progress = 0.0
        session.ride.status = RideStatus.ENROUTE
        session.ride.ts = time.time()
        self._move(session, session.leg2_route.origin)
        logger.info(f"Session {session.session_key}: ride {session.ride.ride_id} heading to destination")

    def step(self, session: DispatchSession) -> SessionPhase:
        """Advance the active leg by one tick; a no-op outside the moving phases."""
        if session.closed:
            return session.phase

        if session.phase is SessionPhase.GOING_TO_PICKUP:
            session.leg1_progress = advance_progress(session.leg1_progress, self.progress_step)
            if session.leg1_progress >= 1.0:
                self._arrive_at_pickup(session)
            else:
                self._move(session, point_at(session.leg1_route.points, session.leg1_progress))
        elif session.phase is SessionPhase.GOING_TO_DESTINATION:
            session.leg2_progress = advance_progress(session.leg2_progress, self.progress_step)
            if session.leg2_progress >= 1.0:
                self._arrive_at_destination(session)
            else:
                self._move(session, point_at(session.leg2_route.points, session.leg2_progress))
        return session.phase

    async def drive(self, session: DispatchSession, on_finished: SessionCallback) -> None:
        while session.phase is SessionPhase.GOING_TO_PICKUP and not session.closed:
            await asyncio.sleep(self.tick_interval_seconds)
            self.step(session)

        await asyncio.sleep(self.pickup_dwell_seconds)
        if session.closed:
            return
        self.start_destination_leg(session)

        while session.phase is SessionPhase.GOING_TO_DESTINATION and not session.closed:
            await asyncio.sleep(self.tick_interval_seconds)
            self.step(session)

        await asyncio.sleep(self.completion_delay_seconds)
        if not session.closed:
            on_finished(session)

    def _arrive_at_pickup(self, session: DispatchSession) -> None:
        session.phase = SessionPhase.PICKUP_WAIT
        self._move(session, session.ride.pickup)
        logger.info(f"Session {session.session_key}: {session.vehicle_id} arrived at pickup")
        notify_safely(self.notifier, ARRIVED_AT_PICKUP, self._milestone_payload(session))

    def _arrive_at_destination(self, session: DispatchSession) -> None:
        session.phase = SessionPhase.COMPLETED
        session.ride.status = RideStatus.COMPLETED
        session.ride.ts = time.time()
        self._move(session, session.ride.dropoff)
        logger.info(f"Session {session.session_key}: ride {session.ride.ride_id} completed")
        notify_safely(self.notifier, RIDE_COMPLETED, self._milestone_payload(session))

    def _move(self, session: DispatchSession, position: GeoPoint) -> None:
        current = self.registry.get(session.vehicle_id)
        heading = None
        if current is not None and current.position != position:
            heading = bearing_degrees(current.position.lat, current.position.lng, position.lat, position.lng)
        vehicle = self.registry.move_controlled(
            session.vehicle_id,
            session.session_key,
            position,
            session.vehicle_status,
            heading=heading,
        )
        publish_safely(self.publisher, VEHICLE_LOCATIONS, vehicle_location_payload(vehicle), key=vehicle.taxi_id)

    @staticmethod
    def _milestone_payload(session: DispatchSession) -> dict:
        return {
            "rideId": session.ride.ride_id,
            "taxiId": session.vehicle_id,
            "phase": session.phase.value,
            "location": (session.ride.pickup if session.phase is SessionPhase.PICKUP_WAIT else session.ride.dropoff).to_dict(),
            "timestamp": int(time.time() * 1000),
        }
