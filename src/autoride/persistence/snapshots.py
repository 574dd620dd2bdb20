"""Snapshot/restore of the active dispatch session."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from pydantic import ValidationError

from ..config import settings
from ..db.supabase import get_supabase_client
from ..models.domain import GeoPoint, Vehicle
from ..schemas.sessions import PointModel, SessionSnapshotModel, SnapshotRide, SnapshotVehicle
from ..services.dispatch.errors import StaleSessionSnapshotError
from ..services.dispatch.models import DispatchSession
from .filesystem import FileStorage

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class SnapshotStore(Protocol):
    def save(self, key: str, snapshot: SessionSnapshotModel) -> None:
        ...

    def load(self, key: str) -> Optional[dict[str, Any]]:
        ...

    def delete(self, key: str) -> None:
        ...


class FileSnapshotStore:
    """Keeps one JSON document per session key under ``<data_root>/sessions``."""

    def __init__(self, root: Path | None = None) -> None:
        self.storage = FileStorage(root=root)

    def save(self, key: str, snapshot: SessionSnapshotModel) -> None:
        self.storage.write_json(self.storage.session_path(key), snapshot.model_dump(mode="json", by_alias=True))

    def load(self, key: str) -> Optional[dict[str, Any]]:
        return self.storage.read_json(self.storage.session_path(key))

    def delete(self, key: str) -> None:
        self.storage.delete(self.storage.session_path(key))


class SupabaseSnapshotStore:
    """Stores snapshots as JSON payloads in a Supabase table keyed by ``session_key``."""

    def __init__(self, client: Any, table: str | None = None) -> None:
        self.client = client
        self.table = table or settings.snapshot_table

    def save(self, key: str, snapshot: SessionSnapshotModel) -> None:
        self.client.table(self.table).upsert(
            {
                "session_key": key,
                "payload": snapshot.model_dump(mode="json", by_alias=True),
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="session_key",
        ).execute()

    def load(self, key: str) -> Optional[dict[str, Any]]:
        response = self.client.table(self.table).select("payload").eq("session_key", key).limit(1).execute()
        rows = response.data or []
        if not rows:
            return None
        return rows[0].get("payload")

    def delete(self, key: str) -> None:
        self.client.table(self.table).delete().eq("session_key", key).execute()


def build_snapshot_store() -> SnapshotStore:
    client = get_supabase_client()
    if client is not None:
        return SupabaseSnapshotStore(client)
    return FileSnapshotStore()


def build_snapshot(session: DispatchSession, vehicle: Vehicle, now_seconds: float) -> SessionSnapshotModel:
    ride = session.ride
    return SessionSnapshotModel(
        vehicle=SnapshotVehicle(
            taxi_id=vehicle.taxi_id,
            lat=session.leg1_route.origin.lat,
            lon=session.leg1_route.origin.lng,
            speed_kph=vehicle.speed_kph,
            status=vehicle.status.value,
            seq=vehicle.seq,
            heading=vehicle.heading,
        ),
        eta_seconds=session.eta_seconds,
        leg1_route=[PointModel(lat=point.lat, lng=point.lng) for point in session.leg1_route.points],
        timestamp_millis=int(now_seconds * 1000),
        ride=SnapshotRide(
            ride_id=ride.ride_id,
            user_id=ride.user_id,
            pickup=PointModel(**ride.pickup.to_dict()),
            dropoff=PointModel(**ride.dropoff.to_dict()),
            surge_multiplier=ride.surge_multiplier,
        ),
    )


def ensure_fresh(snapshot: SessionSnapshotModel, key: str, now_seconds: float, max_age_seconds: float) -> None:
    age = now_seconds - snapshot.timestamp_millis / 1000
    if age > max_age_seconds:
        raise StaleSessionSnapshotError(key, age)


def load_fresh_snapshot(
    store: SnapshotStore,
    key: str,
    *,
    clock: Clock,
    max_age_seconds: float | None = None,
) -> Optional[SessionSnapshotModel]:
    """Return the stored snapshot if it is still inside the recovery window.

    Stale or unreadable snapshots are deleted and reported as absent.
    """
    max_age = max_age_seconds if max_age_seconds is not None else settings.snapshot_max_age_seconds
    raw = store.load(key)
    if raw is None:
        return None
    try:
        snapshot = SessionSnapshotModel.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Discarding unreadable snapshot '{key}': {e.error_count()} validation errors")
        store.delete(key)
        return None
    try:
        ensure_fresh(snapshot, key, clock(), max_age)
    except StaleSessionSnapshotError as e:
        logger.info(f"Discarding stale snapshot: {e}")
        store.delete(key)
        return None
    return snapshot


def snapshot_route_points(snapshot: SessionSnapshotModel) -> tuple[GeoPoint, ...]:
    return tuple(GeoPoint(lat=point.lat, lng=point.lng) for point in snapshot.leg1_route)
