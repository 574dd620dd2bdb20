"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import fleet, health, metrics, pricing, rides, stream
from .config import settings
from .persistence.snapshots import build_snapshot_store
from .services.dispatch.service import DispatchService
from .services.events.bus import InMemoryEventBus, KafkaEventPublisher
from .services.events.notifications import LoggingNotificationSink
from .services.fleet.feed import LocationFeed, seed_fleet
from .services.fleet.registry import FleetRegistry


def build_event_bus() -> InMemoryEventBus:
    forward_to = None
    if settings.kafka_brokers:
        forward_to = KafkaEventPublisher(settings.kafka_brokers, client_id=settings.kafka_client_id)
    return InMemoryEventBus(
        history_size=settings.event_history_size,
        queue_size=settings.subscriber_queue_size,
        forward_to=forward_to,
    )


def create_app(
    *,
    dispatch: DispatchService | None = None,
    event_bus: InMemoryEventBus | None = None,
    seed: bool = True,
) -> FastAPI:
    logging.basicConfig(level=settings.log_level)

    event_bus = event_bus or build_event_bus()
    if dispatch is None:
        dispatch = DispatchService.build(
            FleetRegistry(),
            publisher=event_bus,
            notifier=LoggingNotificationSink(),
            snapshot_store=build_snapshot_store(),
        )
    registry = dispatch.registry

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if seed and not len(registry):
            seed_fleet(registry)
        feed = None
        if settings.feed_enabled:
            feed = LocationFeed(registry, event_bus)
            feed.start()
        try:
            await dispatch.recover()
        except Exception:
            logging.exception("Session recovery failed; starting without an active ride")
        yield
        if feed is not None:
            await feed.stop()
        await dispatch.shutdown()
        if isinstance(event_bus.forward_to, KafkaEventPublisher):
            event_bus.forward_to.flush()

    app = FastAPI(title=settings.app_name, root_path="", lifespan=lifespan)
    app.state.dispatch = dispatch
    app.state.registry = registry
    app.state.event_bus = event_bus

    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Root endpoint for diagnostics
    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(fleet.router, prefix=settings.api_prefix)
    app.include_router(rides.router, prefix=settings.api_prefix)
    app.include_router(metrics.router, prefix=settings.api_prefix)
    app.include_router(pricing.router, prefix=settings.api_prefix)
    app.include_router(stream.router, prefix=settings.api_prefix)
    return app


app = create_app()
