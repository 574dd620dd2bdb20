"""WebSocket relay for vehicle positions."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ...services.events.bus import VEHICLE_LOCATIONS, InMemoryEventBus, vehicle_location_payload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        envelope = await queue.get()
        await websocket.send_json({"type": "location", "topic": envelope.topic, "payload": envelope.payload})


async def _stop_forwarder(forwarder: asyncio.Task) -> None:
    """Cancel the forwarder and collect its outcome so nothing is left unretrieved."""
    forwarder.cancel()
    try:
        await forwarder
    except asyncio.CancelledError:
        pass
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.info(f"Vehicle stream forwarder stopped after send failure: {e!r}")


@router.websocket("/stream/vehicles")
async def stream_vehicles(websocket: WebSocket) -> None:
    """Send the current fleet on connect, then every ``vehicle.locations`` event.

    Viewers that fall behind lose updates at their bounded queue.
    """
    bus: InMemoryEventBus = websocket.app.state.event_bus
    registry = websocket.app.state.registry
    await websocket.accept()
    queue = bus.subscribe([VEHICLE_LOCATIONS])
    forwarder: asyncio.Task | None = None
    try:
        await websocket.send_json(
            {"type": "snapshot", "vehicles": [vehicle_location_payload(vehicle) for vehicle in registry.vehicles()]}
        )
        forwarder = asyncio.create_task(_forward(websocket, queue))
        # Viewers never send; receive only to notice the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Vehicle stream viewer disconnected")
    finally:
        if forwarder is not None:
            await _stop_forwarder(forwarder)
        bus.unsubscribe(queue)
