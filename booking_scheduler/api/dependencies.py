# ============================================================================
# FILE: booking_scheduler/api/dependencies.py
# Shared FastAPI dependencies (no authentication, ids are passed explicitly)
# ============================================================================
from fastapi import Depends

from booking_scheduler.core.retry import RetryPolicy
from booking_scheduler.services.availability.availability_cache import AvailabilityCache, get_availability_cache
from booking_scheduler.services.events.event_bus import SchedulingEventBus, get_event_bus
from booking_scheduler.services.slots.slot_lock_service import SlotLockService


def get_cache() -> AvailabilityCache:
    return get_availability_cache()


def get_bus() -> SchedulingEventBus:
    return get_event_bus()


def get_lock_service(bus: SchedulingEventBus = Depends(get_bus)) -> SlotLockService:
    return SlotLockService(event_bus=bus)


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy.from_settings()
