import json

import pytest

from autoride.services.events.bus import (
    PRICING_UPDATES,
    RIDES_REQUESTED,
    VEHICLE_LOCATIONS,
    InMemoryEventBus,
    KafkaEventPublisher,
    publish_safely,
)
from autoride.services.events.notifications import LoggingNotificationSink, notify_safely


class FakeProducer:
    def __init__(self):
        self.messages = []
        self.polls = 0
        self.flushed = False

    def produce(self, topic, key=None, value=None):
        self.messages.append((topic, key, value))

    def poll(self, timeout):
        self.polls += 1
        return 0

    def flush(self, timeout=None):
        self.flushed = True
        return 0


class BrokenPublisher:
    def publish(self, topic, payload, *, key=None):
        raise RuntimeError("broker unavailable")


def test_bus_fans_out_by_topic() -> None:
    bus = InMemoryEventBus()
    locations = bus.subscribe([VEHICLE_LOCATIONS])
    everything = bus.subscribe()

    bus.publish(VEHICLE_LOCATIONS, {"taxiId": "TAXI-1"}, key="TAXI-1")
    bus.publish(RIDES_REQUESTED, {"rideId": "ride-1"}, key="ride-1")

    assert locations.qsize() == 1
    assert locations.get_nowait().payload == {"taxiId": "TAXI-1"}
    assert everything.qsize() == 2
    assert bus.published_count == 2
    assert [event.topic for event in bus.recent()] == [VEHICLE_LOCATIONS, RIDES_REQUESTED]


def test_slow_subscribers_drop_events() -> None:
    bus = InMemoryEventBus(queue_size=2)
    queue = bus.subscribe()

    for i in range(5):
        bus.publish(VEHICLE_LOCATIONS, {"seq": i})

    assert queue.qsize() == 2
    assert [queue.get_nowait().payload["seq"] for _ in range(2)] == [0, 1]
    assert bus.published_count == 5


def test_unsubscribe_stops_delivery() -> None:
    bus = InMemoryEventBus()
    queue = bus.subscribe()
    bus.unsubscribe(queue)

    bus.publish(PRICING_UPDATES, {"surgeMultiplier": 1.2})

    assert queue.empty()
    assert bus.subscriber_count == 0


def test_history_is_bounded() -> None:
    bus = InMemoryEventBus(history_size=3)
    for i in range(10):
        bus.publish(VEHICLE_LOCATIONS, {"seq": i})

    assert [event.payload["seq"] for event in bus.recent(VEHICLE_LOCATIONS)] == [7, 8, 9]


def test_kafka_publisher_produces_json() -> None:
    producer = FakeProducer()
    publisher = KafkaEventPublisher(["localhost:9092"], producer=producer)

    publisher.publish(RIDES_REQUESTED, {"rideId": "ride-1"}, key="ride-1")
    publisher.flush()

    topic, key, value = producer.messages[0]
    assert topic == RIDES_REQUESTED
    assert key == "ride-1"
    assert json.loads(value) == {"rideId": "ride-1"}
    assert producer.polls == 1
    assert producer.flushed is True


def test_kafka_publisher_requires_brokers() -> None:
    with pytest.raises(ValueError):
        KafkaEventPublisher([])


def test_forwarding_failures_do_not_block_local_delivery() -> None:
    bus = InMemoryEventBus(forward_to=BrokenPublisher())
    queue = bus.subscribe()

    bus.publish(VEHICLE_LOCATIONS, {"taxiId": "TAXI-1"})

    assert queue.qsize() == 1


def test_bus_forwards_to_kafka() -> None:
    producer = FakeProducer()
    bus = InMemoryEventBus(forward_to=KafkaEventPublisher(["broker:9092"], producer=producer))

    bus.publish(VEHICLE_LOCATIONS, {"taxiId": "TAXI-1"}, key="TAXI-1")

    assert producer.messages[0][0] == VEHICLE_LOCATIONS


def test_publish_safely_reports_failures() -> None:
    assert publish_safely(BrokenPublisher(), RIDES_REQUESTED, {}) is False
    assert publish_safely(None, RIDES_REQUESTED, {}) is False
    assert publish_safely(InMemoryEventBus(), RIDES_REQUESTED, {}) is True


def test_notify_safely_swallows_sink_errors() -> None:
    class BrokenSink:
        def notify(self, milestone, payload):
            raise RuntimeError("sink down")

    notify_safely(BrokenSink(), "COMPLETED", {"rideId": "ride-1"})
    notify_safely(None, "COMPLETED", {})
    LoggingNotificationSink().notify("COMPLETED", {"rideId": "ride-1", "taxiId": "TAXI-1"})
