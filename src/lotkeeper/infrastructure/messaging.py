# File: src/lotkeeper/infrastructure/messaging.py
"""
Messaging Infrastructure for the Lot Allocation Engine

1. Event Bus - intra-process publish/subscribe for domain events
2. Redis Event Publisher - relays domain events to a Redis pub/sub channel

Events are published only after the state change that raised them has been
committed to the store. A failing handler is logged and skipped; it never
undoes a committed change.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging
import json

import redis

from ..domain.models import DomainEvent


ALL_EVENTS = "*"


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Abstract base class for event handlers"""

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        return True


class RecordingEventHandler(EventHandler):
    """Keeps every handled event in memory, in delivery order"""

    def __init__(self):
        self.events: List[DomainEvent] = []

    def handle(self, event: DomainEvent) -> None:
        self.events.append(event)

    def event_types(self) -> List[str]:
        return [e.event_type for e in self.events]


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    In-memory event bus for intra-process event publishing

    Handlers subscribe to an event type such as ``vehicle.parked`` or to
    ``*`` for every event.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe to events of a specific type"""
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type}")

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type}")

    def publish(self, event: DomainEvent) -> None:
        """Publish an event to all matching subscribers"""
        self._logger.info(f"Publishing event: {event.event_type} (ID: {event.event_id})")

        handlers = self._subscribers.get(event.event_type, []) + self._subscribers.get(ALL_EVENTS, [])
        for handler in handlers:
            if not handler.can_handle(event):
                continue
            try:
                handler.handle(event)
            except Exception as e:
                self._logger.error(
                    f"Error handling event {event.event_type} with {handler.__class__.__name__}: {e}"
                )

    def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish(event)

    def clear_subscribers(self) -> None:
        """Clear all subscribers (for testing)"""
        self._subscribers.clear()


# ============================================================================
# REDIS EVENT PUBLISHER
# ============================================================================

class RedisEventPublisher(EventHandler):
    """Relays domain events as JSON to a Redis pub/sub channel"""

    def __init__(self, redis_client: redis.Redis, channel: str = "lotkeeper.events"):
        self.redis_client = redis_client
        self.channel = channel
        self._logger = logging.getLogger(self.__class__.__name__)

    @classmethod
    def from_url(cls, redis_url: str, channel: str = "lotkeeper.events", **kwargs) -> 'RedisEventPublisher':
        return cls(redis.Redis.from_url(redis_url, **kwargs), channel)

    def handle(self, event: DomainEvent) -> None:
        try:
            receivers = self.redis_client.publish(self.channel, json.dumps(event.to_dict(), default=str))
            self._logger.debug(f"Published {event.event_type} to {self.channel} ({receivers} receiver(s))")
        except redis.RedisError as e:
            self._logger.error(f"Error publishing to Redis: {e}")

    def close(self) -> None:
        self.redis_client.close()


def create_event_bus(redis_url: Optional[str] = None, channel: str = "lotkeeper.events") -> EventBus:
    """Event bus with the Redis relay attached when a URL is configured"""
    bus = EventBus()
    if redis_url:
        bus.subscribe(ALL_EVENTS, RedisEventPublisher.from_url(redis_url, channel))
    return bus
