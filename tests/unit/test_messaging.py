#!/usr/bin/env python3
"""
Messaging Unit Tests

Tests for the in-memory event bus and the Redis relay.
"""

import json
import unittest
from unittest.mock import Mock, patch

import redis

from lotkeeper.domain.models import VehicleParkedEvent, SlotRemovedEvent
from lotkeeper.infrastructure.messaging import (
    ALL_EVENTS, EventBus, EventHandler, RecordingEventHandler,
    RedisEventPublisher, create_event_bus
)


class FailingHandler(EventHandler):
    def handle(self, event):
        raise RuntimeError("handler down")


class TestEventBus(unittest.TestCase):
    """Unit tests for EventBus"""

    def setUp(self):
        self.bus = EventBus()
        self.recorder = RecordingEventHandler()

    def test_typed_subscription(self):
        self.bus.subscribe("vehicle.parked", self.recorder)
        self.bus.publish(VehicleParkedEvent("AB-1", 1, "r"))
        self.bus.publish(SlotRemovedEvent(2))
        self.assertEqual(self.recorder.event_types(), ["vehicle.parked"])

    def test_wildcard_subscription(self):
        self.bus.subscribe(ALL_EVENTS, self.recorder)
        self.bus.publish_all([VehicleParkedEvent("AB-1", 1, "r"), SlotRemovedEvent(2)])
        self.assertEqual(self.recorder.event_types(), ["vehicle.parked", "slot.removed"])

    def test_subscribe_is_idempotent(self):
        self.bus.subscribe(ALL_EVENTS, self.recorder)
        self.bus.subscribe(ALL_EVENTS, self.recorder)
        self.bus.publish(SlotRemovedEvent(1))
        self.assertEqual(len(self.recorder.events), 1)

    def test_unsubscribe(self):
        self.bus.subscribe(ALL_EVENTS, self.recorder)
        self.bus.unsubscribe(ALL_EVENTS, self.recorder)
        self.bus.publish(SlotRemovedEvent(1))
        self.assertEqual(self.recorder.events, [])

    def test_failing_handler_does_not_block_others(self):
        self.bus.subscribe(ALL_EVENTS, FailingHandler())
        self.bus.subscribe(ALL_EVENTS, self.recorder)
        with self.assertLogs("EventBus", level="ERROR"):
            self.bus.publish(SlotRemovedEvent(1))
        self.assertEqual(len(self.recorder.events), 1)

    def test_clear_subscribers(self):
        self.bus.subscribe(ALL_EVENTS, self.recorder)
        self.bus.clear_subscribers()
        self.bus.publish(SlotRemovedEvent(1))
        self.assertEqual(self.recorder.events, [])


class TestRedisEventPublisher(unittest.TestCase):
    """Unit tests for RedisEventPublisher with a mocked client"""

    def setUp(self):
        self.client = Mock()
        self.client.publish.return_value = 1
        self.publisher = RedisEventPublisher(self.client, channel="test.events")

    def test_publishes_json_envelope(self):
        event = VehicleParkedEvent("AB-1", 4, "rec-1")
        self.publisher.handle(event)

        channel, body = self.client.publish.call_args[0]
        self.assertEqual(channel, "test.events")
        message = json.loads(body)
        self.assertEqual(message["event_type"], "vehicle.parked")
        self.assertEqual(message["event_id"], event.event_id)
        self.assertEqual(message["data"]["slot_number"], 4)

    def test_redis_errors_are_logged(self):
        self.client.publish.side_effect = redis.ConnectionError("refused")
        with self.assertLogs("RedisEventPublisher", level="ERROR"):
            self.publisher.handle(SlotRemovedEvent(1))

    def test_close_closes_client(self):
        self.publisher.close()
        self.client.close.assert_called_once()

    def test_create_event_bus_without_redis(self):
        bus = create_event_bus(None)
        self.assertEqual(bus._subscribers, {})

    @patch.object(redis.Redis, "from_url")
    def test_create_event_bus_with_redis(self, mock_from_url):
        mock_from_url.return_value = self.client
        bus = create_event_bus("redis://localhost:6379/0", "lot.events")

        mock_from_url.assert_called_once_with("redis://localhost:6379/0")
        bus.publish(SlotRemovedEvent(5))
        self.assertEqual(self.client.publish.call_args[0][0], "lot.events")


if __name__ == '__main__':
    unittest.main()
