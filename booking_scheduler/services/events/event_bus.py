# ============================================================================
# booking_scheduler/services/events/event_bus.py
# ============================================================================
"""Publish/subscribe for scheduling changes (cache invalidation, fan-out)"""
import json
import logging
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Set

import redis
from pydantic import BaseModel, Field

from booking_scheduler.config.redis import RedisKeys
from booking_scheduler.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    APPOINTMENT_CREATED = "appointment.created"
    APPOINTMENT_UPDATED = "appointment.updated"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    EXCEPTION_CREATED = "exception.created"
    EXCEPTION_DELETED = "exception.deleted"
    SLOT_LOCKED = "slot.locked"
    SLOT_RELEASED = "slot.released"
    SLOT_RESERVED = "slot.reserved"


class SchedulingEvent(BaseModel):
    event_type: EventType
    provider_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)


EventHandler = Callable[[SchedulingEvent], None]


class SchedulingEventBus:
    """
    In-process subscribers are called synchronously in registration order.
    When a redis client is given, every event is also published on
    ``RedisKeys.SCHEDULING_EVENTS_CHANNEL`` for other processes.

    Publishing happens after the write has been committed, so a failing
    subscriber is logged and never undoes the write.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self._subscribers: List[tuple] = []
        self._redis = redis_client

    def subscribe(self, handler: EventHandler, event_types: Optional[Set[EventType]] = None) -> None:
        self._subscribers.append((handler, frozenset(event_types) if event_types else None))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscribers = [entry for entry in self._subscribers if entry[0] is not handler]

    def publish(self, event: SchedulingEvent) -> None:
        logger.debug(f"Publishing {event.event_type.value} for provider {event.provider_id}")

        for handler, event_types in list(self._subscribers):
            if event_types is not None and event.event_type not in event_types:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Subscriber {getattr(handler, '__name__', handler)} failed on "
                             f"{event.event_type.value}: {e}")

        if self._redis is not None:
            try:
                self._redis.publish(RedisKeys.SCHEDULING_EVENTS_CHANNEL, event.model_dump_json())
            except redis.RedisError as e:
                logger.warning(f"Could not fan out {event.event_type.value} to redis: {e}")

    def emit(self, event_type: EventType, provider_id: Any = None, **payload) -> SchedulingEvent:
        event = SchedulingEvent(
            event_type=event_type,
            provider_id=str(provider_id) if provider_id is not None else None,
            payload=json.loads(json.dumps(payload, default=str)),
        )
        self.publish(event)
        return event


@lru_cache()
def get_event_bus() -> SchedulingEventBus:
    """Process-wide bus, wired to the availability cache."""
    from booking_scheduler.services.availability.availability_cache import get_availability_cache

    bus = SchedulingEventBus()
    get_availability_cache().attach(bus)
    return bus
