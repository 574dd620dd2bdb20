"""Topic-based event publishing for ride lifecycle and vehicle positions."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

logger = logging.getLogger(__name__)

RIDES_REQUESTED = "rides.requested"
RIDES_ASSIGNED = "rides.assigned"
RIDES_COMPLETED = "rides.completed"
VEHICLE_LOCATIONS = "vehicle.locations"
PRICING_UPDATES = "pricing.updates"

ALL_TOPICS = [
    RIDES_REQUESTED,
    RIDES_ASSIGNED,
    RIDES_COMPLETED,
    VEHICLE_LOCATIONS,
    PRICING_UPDATES,
]


@dataclass(slots=True)
class EventEnvelope:
    topic: str
    key: str | None
    payload: dict[str, Any]
    ts: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "key": self.key, "ts": self.ts, "payload": self.payload}


class EventPublisher(Protocol):
    def publish(self, topic: str, payload: dict[str, Any], *, key: str | None = None) -> None:
        ...


def publish_safely(publisher: EventPublisher | None, topic: str, payload: dict[str, Any], *, key: str | None = None) -> bool:
    """Fire-and-forget publish; failures are logged and reported as False."""
    if publisher is None:
        return False
    try:
        publisher.publish(topic, payload, key=key)
        return True
    except Exception as e:
        logger.warning(f"Failed to publish event to '{topic}': {e}")
        return False


class KafkaEventPublisher:
    """Forward events to Kafka through a confluent-kafka producer."""

    def __init__(
        self,
        brokers: Sequence[str],
        *,
        client_id: str = "autoride-dispatch",
        producer: Any | None = None,
    ) -> None:
        if producer is None:
            if not brokers:
                raise ValueError("Kafka brokers are not configured.")
            from confluent_kafka import Producer

            producer = Producer({"bootstrap.servers": ",".join(brokers), "client.id": client_id})
        self._producer = producer

    def publish(self, topic: str, payload: dict[str, Any], *, key: str | None = None) -> None:
        self._producer.produce(topic=topic, key=key, value=json.dumps(payload))
        # Serve delivery callbacks without blocking
        self._producer.poll(0)

    def flush(self, timeout: float = 5.0) -> int:
        return self._producer.flush(timeout)


class InMemoryEventBus:
    """In-process bus with bounded history and per-subscriber queues.

    Subscribers that fall behind lose events rather than slowing the engine.
    When ``forward_to`` is set every event is also handed to that publisher
    (e.g. Kafka); forwarding failures are logged and do not affect local delivery.
    """

    def __init__(
        self,
        *,
        history_size: int = 100,
        queue_size: int = 256,
        forward_to: EventPublisher | None = None,
    ) -> None:
        self.history: deque[EventEnvelope] = deque(maxlen=history_size)
        self.queue_size = queue_size
        self.forward_to = forward_to
        self.published_count = 0
        self._subscribers: dict[asyncio.Queue, frozenset[str] | None] = {}

    def publish(self, topic: str, payload: dict[str, Any], *, key: str | None = None) -> None:
        envelope = EventEnvelope(topic=topic, key=key, payload=payload)
        self.history.append(envelope)
        self.published_count += 1
        for queue, topics in list(self._subscribers.items()):
            if topics is not None and topic not in topics:
                continue
            try:
                queue.put_nowait(envelope)
            except asyncio.QueueFull:
                pass  # Drop update for slow subscribers
        if self.forward_to is not None:
            publish_safely(self.forward_to, topic, payload, key=key)

    def subscribe(self, topics: Sequence[str] | None = None) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[queue] = frozenset(topics) if topics is not None else None
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.pop(queue, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def recent(self, topic: str | None = None) -> list[EventEnvelope]:
        return [event for event in self.history if topic is None or event.topic == topic]


def vehicle_location_payload(vehicle: Any) -> dict[str, Any]:
    """``vehicle.locations`` body: the vehicle record plus a millisecond timestamp."""
    return {**vehicle.to_dict(), "timestamp": int(time.time() * 1000)}
