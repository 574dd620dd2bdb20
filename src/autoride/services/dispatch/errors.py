"""Dispatch error taxonomy."""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for dispatch errors surfaced to callers."""


class NoVehicleAvailableError(DispatchError):
    def __init__(self, message: str = "No vehicles available for this pickup.") -> None:
        super().__init__(message)


class RideInProgressError(DispatchError):
    def __init__(self, ride_id: str) -> None:
        super().__init__(f"Ride {ride_id} is still active; only one ride may be active at a time.")
        self.ride_id = ride_id


class RideNotFoundError(DispatchError):
    def __init__(self, ride_id: str) -> None:
        super().__init__(f"Ride {ride_id} is not the active ride.")
        self.ride_id = ride_id


class RideNotCancellableError(DispatchError):
    def __init__(self, ride_id: str, status: str) -> None:
        super().__init__(f"Ride {ride_id} cannot be cancelled while {status}.")
        self.ride_id = ride_id
        self.status = status


class StaleSessionSnapshotError(DispatchError):
    """Raised when a persisted session is older than the recovery window."""

    def __init__(self, key: str, age_seconds: float) -> None:
        super().__init__(f"Snapshot '{key}' is {age_seconds:.0f}s old and will not be resumed.")
        self.key = key
        self.age_seconds = age_seconds
