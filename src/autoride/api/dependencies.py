"""Request-scoped accessors for the engine objects held on ``app.state``."""

from __future__ import annotations

from fastapi import Request

from ..services.dispatch.service import DispatchService
from ..services.events.bus import InMemoryEventBus
from ..services.fleet.registry import FleetRegistry


def get_dispatch_service(request: Request) -> DispatchService:
    return request.app.state.dispatch


def get_registry(request: Request) -> FleetRegistry:
    return request.app.state.registry


def get_event_bus(request: Request) -> InMemoryEventBus:
    return request.app.state.event_bus
