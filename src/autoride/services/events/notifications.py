"""Milestone notifications (arrival at pickup, ride completion)."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

ARRIVED_AT_PICKUP = "ARRIVED_AT_PICKUP"
RIDE_COMPLETED = "COMPLETED"


class NotificationSink(Protocol):
    def notify(self, milestone: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotificationSink:
    def notify(self, milestone: str, payload: dict[str, Any]) -> None:
        logger.info(f"Ride {payload.get('rideId')}: {milestone} (taxi {payload.get('taxiId')})")


def notify_safely(sink: NotificationSink | None, milestone: str, payload: dict[str, Any]) -> None:
    if sink is None:
        return
    try:
        sink.notify(milestone, payload)
    except Exception as e:
        logger.warning(f"Notification '{milestone}' failed: {e}")
