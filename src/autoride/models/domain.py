"""Domain models for vehicles, locations and ride requests."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """Immutable latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: dict) -> "GeoPoint":
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))


class VehicleStatus(str, Enum):
    """Vehicle states surfaced to the fleet and to viewers.

    IDLE, ASSIGNED, ENROUTE and OFFLINE come from the external location feed.
    The remaining values are only written by the journey simulator while a
    dispatch session controls the vehicle.
    """

    IDLE = "IDLE"
    ASSIGNED = "ASSIGNED"
    ENROUTE = "ENROUTE"
    OFFLINE = "OFFLINE"
    EN_ROUTE_TO_PICKUP = "EN_ROUTE_TO_PICKUP"
    ARRIVED_AT_PICKUP = "ARRIVED_AT_PICKUP"
    EN_ROUTE_TO_DESTINATION = "EN_ROUTE_TO_DESTINATION"
    COMPLETED = "COMPLETED"


DISPATCHABLE_STATUSES = frozenset({VehicleStatus.IDLE, VehicleStatus.ENROUTE})


@dataclass(slots=True)
class Vehicle:
    """A fleet vehicle as known to the registry.

    ``controlled_by`` holds the key of the dispatch session that currently owns
    the record; while it is set, only that session may write position/status.

    ``seq`` is the last sequence number accepted from the external feed and
    only moves with feed reports. ``revision`` counts every write to the record,
    feed or simulator, so viewers can order what they receive.
    """

    taxi_id: str
    position: GeoPoint
    speed_kph: float = 0.0
    status: VehicleStatus = VehicleStatus.IDLE
    seq: int = 0
    heading: Optional[float] = None
    controlled_by: Optional[str] = None
    revision: int = 0

    @property
    def is_controlled(self) -> bool:
        return self.controlled_by is not None

    def to_dict(self) -> dict:
        return {
            "taxiId": self.taxi_id,
            "lat": self.position.lat,
            "lon": self.position.lng,
            "speedKph": self.speed_kph,
            "status": self.status.value,
            "seq": self.seq,
            "heading": self.heading,
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Vehicle":
        return cls(
            taxi_id=str(data["taxiId"]),
            position=GeoPoint(lat=float(data["lat"]), lng=float(data["lon"])),
            speed_kph=float(data.get("speedKph", 0.0)),
            status=VehicleStatus(data.get("status", VehicleStatus.IDLE.value)),
            seq=int(data.get("seq", 0)),
            heading=data.get("heading"),
            revision=int(data.get("revision", 0)),
        )


@dataclass(frozen=True, slots=True)
class LocationUpdate:
    """A position report coming from the external location feed."""

    taxi_id: str
    position: GeoPoint
    seq: int
    speed_kph: float = 0.0
    status: VehicleStatus = VehicleStatus.IDLE
    heading: Optional[float] = None


class RideStatus(str, Enum):
    """Lifecycle states for a ride request."""

    REQUESTED = "REQUESTED"
    ASSIGNED = "ASSIGNED"
    ENROUTE = "ENROUTE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


CANCELLABLE_RIDE_STATUSES = frozenset({RideStatus.REQUESTED, RideStatus.ASSIGNED})


@dataclass(slots=True)
class RideRequest:
    """A passenger's request to travel from pickup to dropoff."""

    ride_id: str
    user_id: str
    pickup: GeoPoint
    dropoff: GeoPoint
    status: RideStatus = RideStatus.REQUESTED
    taxi_id: Optional[str] = None
    eta_seconds: int = 0
    surge_multiplier: float = 1.0
    ts: float = 0.0

    def to_dict(self) -> dict:
        return {
            "rideId": self.ride_id,
            "userId": self.user_id,
            "pickup": self.pickup.to_dict(),
            "dropoff": self.dropoff.to_dict(),
            "status": self.status.value,
            "taxiId": self.taxi_id,
            "etaSeconds": self.eta_seconds,
            "surgeMultiplier": self.surge_multiplier,
            "ts": self.ts,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RideRequest":
        return cls(
            ride_id=str(data["rideId"]),
            user_id=str(data["userId"]),
            pickup=GeoPoint.from_dict(data["pickup"]),
            dropoff=GeoPoint.from_dict(data["dropoff"]),
            status=RideStatus(data.get("status", RideStatus.REQUESTED.value)),
            taxi_id=data.get("taxiId"),
            eta_seconds=int(data.get("etaSeconds", 0)),
            surge_multiplier=float(data.get("surgeMultiplier", 1.0)),
            ts=float(data.get("ts", 0.0)),
        )
