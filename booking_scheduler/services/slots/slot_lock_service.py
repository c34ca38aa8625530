# ============================================================================
# booking_scheduler/services/slots/slot_lock_service.py
# Checkout locking: Available -> Locked(expiry) -> Available | Reserved
# ============================================================================
"""Temporary slot holds during checkout"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Optional, Sequence

from sqlalchemy.orm import Session

from booking_scheduler.config.settings import get_settings
from booking_scheduler.core.errors import MSG_LOCK_EXPIRED, MSG_SLOTS_UNAVAILABLE, SchedulingError, SlotLockError
from booking_scheduler.models.time_slot import TimeSlot
from booking_scheduler.services.events.event_bus import EventType, SchedulingEventBus
from booking_scheduler.services.repository.scheduling_repository import SchedulingRepository
from booking_scheduler.utils.datetime_utils import ensure_aware, to_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class CheckoutLock:
    """Handle held by the client for the duration of a checkout"""
    slot_ids: List[str]
    expires_at: datetime
    lock_token: Optional[str] = None

    def time_remaining(self, now: Optional[datetime] = None) -> timedelta:
        remaining = ensure_aware(self.expires_at) - ensure_aware(now or utc_now())
        return max(remaining, timedelta(0))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.time_remaining(now) <= timedelta(0)

    def format_time_remaining(self, now: Optional[datetime] = None) -> str:
        seconds = int(self.time_remaining(now).total_seconds())
        return f"{seconds // 60}:{seconds % 60:02d}"


@dataclass
class LockResult:
    acquired: bool
    slot_ids: List[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    lock_token: Optional[str] = None

    @property
    def lock(self) -> Optional[CheckoutLock]:
        if not self.acquired:
            return None
        return CheckoutLock(slot_ids=self.slot_ids, expires_at=self.expires_at, lock_token=self.lock_token)


def _unique_ids(slot_ids: Sequence[Any]) -> List[str]:
    seen = []
    for slot_id in slot_ids:
        value = str(slot_id)
        if value not in seen:
            seen.append(value)
    return seen


class SlotLockService:
    """
    All-or-nothing locking over a set of slots.

    A lock is a future ``blocked_until`` on the slot row plus the token of the
    checkout that took it (``locked_by``). Expiry is passive: once
    ``blocked_until`` is in the past the slot is lockable again without any
    cleanup job. Only the holder of the token can turn the lock into a
    reservation.
    """

    def __init__(self, event_bus: Optional[SchedulingEventBus] = None, lock_minutes: Optional[int] = None):
        self.event_bus = event_bus
        self.lock_minutes = lock_minutes or get_settings().CHECKOUT_LOCK_MINUTES

    @staticmethod
    def is_lockable(slot: TimeSlot, now: Optional[datetime] = None) -> bool:
        if not slot.is_available or slot.is_reserved:
            return False
        if slot.blocked_until is None:
            return True
        return ensure_aware(slot.blocked_until) <= ensure_aware(now or utc_now())

    def acquire_lock(self, db: Session, slot_ids: Sequence[Any], now: Optional[datetime] = None) -> LockResult:
        ids = _unique_ids(slot_ids)
        if not ids:
            return LockResult(acquired=False, reason="No slots selected")

        now = to_utc(now or utc_now())
        expires_at = now + timedelta(minutes=self.lock_minutes)
        token = uuid.uuid4().hex

        updated = SchedulingRepository.update_slots(
            db, ids, {"blocked_until": expires_at, "locked_by": token}, only_lockable=True, now=now
        )
        if updated != len(ids):
            db.rollback()
            logger.info(f"Lock refused: {updated}/{len(ids)} slots were lockable")
            return LockResult(acquired=False, slot_ids=ids, reason=MSG_SLOTS_UNAVAILABLE)

        db.commit()
        logger.info(f"Locked {len(ids)} slots until {expires_at.isoformat()}")
        self._publish(db, EventType.SLOT_LOCKED, ids, expires_at=expires_at.isoformat())
        return LockResult(acquired=True, slot_ids=ids, expires_at=expires_at, lock_token=token)

    def release_lock(self, db: Session, slot_ids: Sequence[Any], lock_token: Optional[str] = None) -> int:
        """
        Clear the lock; releasing an already released slot is a no-op.

        With ``lock_token`` only slots still held under that token are
        released, so a stale checkout page cannot drop someone else's lock.
        """
        ids = _unique_ids(slot_ids)
        if not ids:
            return 0

        released = SchedulingRepository.update_slots(
            db, ids, {"blocked_until": None, "locked_by": None}, lock_token=lock_token
        )
        db.commit()
        logger.info(f"Released lock on {released} slots")
        self._publish(db, EventType.SLOT_RELEASED, ids)
        return released

    def release_lock_quietly(self, db: Session, slot_ids: Sequence[Any], lock_token: Optional[str] = None) -> int:
        """Release for abandoned checkouts; the lock expires on its own if this fails."""
        try:
            return self.release_lock(db, slot_ids, lock_token=lock_token)
        except SchedulingError as e:
            logger.warning(f"Background lock release failed, relying on expiry: {e}")
            return 0

    def complete_booking(self, db: Session, slot_ids: Sequence[Any], lock_token: Optional[str],
                         now: Optional[datetime] = None) -> int:
        """
        Locked -> Reserved once payment succeeded.

        Every slot must still carry ``lock_token``. A lapsed lock nobody else
        took in the meantime still completes; a slot that was never locked,
        or was re-locked by another checkout, fails the whole booking.
        """
        ids = _unique_ids(slot_ids)
        if not ids:
            raise SlotLockError("No slots selected")
        if not lock_token:
            raise SlotLockError(MSG_LOCK_EXPIRED)

        slots = SchedulingRepository.get_slots(db, slot_ids=ids)
        if len(slots) != len(ids) or any(slot.is_reserved for slot in slots):
            raise SlotLockError(MSG_SLOTS_UNAVAILABLE)

        now = ensure_aware(now or utc_now())
        held_elsewhere = [
            slot for slot in slots
            if slot.locked_by != lock_token
            and slot.blocked_until is not None and ensure_aware(slot.blocked_until) > now
        ]

        reserved = SchedulingRepository.update_slots(
            db, ids,
            {"is_available": False, "is_reserved": True, "blocked_until": None, "locked_by": None},
            lock_token=lock_token,
        )
        if reserved != len(ids):
            db.rollback()
            logger.info(f"Completion refused: {reserved}/{len(ids)} slots were held by this checkout")
            raise SlotLockError(MSG_SLOTS_UNAVAILABLE if held_elsewhere else MSG_LOCK_EXPIRED)

        db.commit()
        logger.info(f"Reserved {reserved} slots")
        self._publish(db, EventType.SLOT_RESERVED, ids)
        return reserved

    def _publish(self, db: Session, event_type: EventType, ids: List[str], **payload) -> None:
        if self.event_bus is None:
            return
        providers = {str(slot.provider_id) for slot in SchedulingRepository.get_slots(db, slot_ids=ids)}
        for provider_id in providers:
            self.event_bus.emit(event_type, provider_id, slot_ids=ids, **payload)
