# ===== booking_scheduler/services/availability/availability_service.py =====
from typing import Any, Dict, List, Optional
from datetime import date, datetime, time, timedelta
from sqlalchemy.orm import Session
from booking_scheduler.config.settings import get_settings
from booking_scheduler.models import TimeSlot
from booking_scheduler.services.availability.availability_cache import AvailabilityCache
from booking_scheduler.services.availability.conflict_validator import ConflictValidator, REASON_RECURRING
from booking_scheduler.services.repository.scheduling_repository import SchedulingRepository
from booking_scheduler.utils.datetime_utils import combine_local, ensure_aware, overlaps, to_local, to_utc, utc_now
import logging

logger = logging.getLogger(__name__)

REASON_RESERVED = "reserved"
REASON_LOCKED = "locked"

# Internal key on locked entries; dropped before the grid leaves the service
_LOCKED_UNTIL = "locked_until"


class AvailabilityService:
    """Bookable start times for a provider on one day"""

    @staticmethod
    def candidate_starts(day: date, duration_minutes: int) -> List[datetime]:
        """
        Grid of start times inside the working day. The step equals the
        service duration (never below MIN_GRID_STEP_MINUTES) and every
        candidate must finish by the end of the working day.
        """
        settings = get_settings()
        step = timedelta(minutes=max(duration_minutes, settings.MIN_GRID_STEP_MINUTES))
        duration = timedelta(minutes=duration_minutes)

        window_start = combine_local(day, time(hour=settings.WORKING_DAY_START_HOUR))
        window_end = combine_local(day, time(hour=settings.WORKING_DAY_END_HOUR))

        starts = []
        current = window_start
        while current + duration <= window_end:
            starts.append(current)
            current += step
        return starts

    @staticmethod
    def get_day_availability(
            db: Session,
            provider_id: Any,
            day: date,
            duration_minutes: int,
            now: Optional[datetime] = None,
            cache: Optional[AvailabilityCache] = None
    ) -> List[Dict]:
        """
        Returns [{time, start, end, available, reason}] for every candidate
        start. On the current day, times already past are left out.

        A start covered by a checkout lock reads as unavailable only while
        the lock is unexpired, including when the grid comes from the cache.
        """
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")

        now = now or utc_now()
        grid = cache.get(provider_id, day, duration_minutes) if cache else None
        if grid is None:
            grid = AvailabilityService._compute_grid(db, provider_id, day, duration_minutes, now)
            if cache:
                cache.set(provider_id, day, duration_minutes, grid)
        else:
            logger.debug(f"Availability cache hit for provider {provider_id} on {day}")

        grid = [AvailabilityService._apply_lock_expiry(slot, now) for slot in grid]
        if to_local(now).date() == day:
            cutoff = to_utc(now)
            grid = [slot for slot in grid if datetime.fromisoformat(slot["start"]) > cutoff]
        return grid

    @staticmethod
    def _apply_lock_expiry(slot: Dict, now: datetime) -> Dict:
        if _LOCKED_UNTIL not in slot:
            return slot
        entry = {key: value for key, value in slot.items() if key != _LOCKED_UNTIL}
        if datetime.fromisoformat(slot[_LOCKED_UNTIL]) <= to_utc(now):
            entry["available"], entry["reason"] = True, None
        return entry

    @staticmethod
    def slot_state_reason(slots: List[TimeSlot], start: datetime, end: datetime, now: datetime):
        """
        Reason the slot rows under [start, end) make it unbookable, checked in
        order recurring block, reservation, live lock. Returns (reason,
        locked_until) with locked_until set only for a lock.
        """
        covering = [slot for slot in slots
                    if overlaps(start, end, slot.slot_datetime_start, slot.slot_datetime_end)]
        if any(slot.recurring_blocked for slot in covering):
            return REASON_RECURRING, None
        if any(slot.is_reserved or not slot.is_available for slot in covering):
            return REASON_RESERVED, None

        now = ensure_aware(now)
        lock_ends = [ensure_aware(slot.blocked_until) for slot in covering
                     if slot.blocked_until is not None and ensure_aware(slot.blocked_until) > now]
        if lock_ends:
            return REASON_LOCKED, to_utc(max(lock_ends))
        return None, None

    @staticmethod
    def _compute_grid(db: Session, provider_id: Any, day: date, duration_minutes: int,
                      now: Optional[datetime] = None) -> List[Dict]:
        starts = AvailabilityService.candidate_starts(day, duration_minutes)
        if not starts:
            return []

        now = now or utc_now()
        duration = timedelta(minutes=duration_minutes)
        context = ConflictValidator.load_context(db, provider_id, starts[0], starts[-1] + duration)
        slots = SchedulingRepository.get_slots(db, provider_id=provider_id, date_from=day, date_to=day)

        grid = []
        for start in starts:
            end = start + duration
            entry = {
                "time": start.strftime("%H:%M"),
                "start": to_utc(start).isoformat(),
                "end": to_utc(end).isoformat(),
            }

            reason, locked_until = AvailabilityService.slot_state_reason(slots, start, end, now)
            if reason == REASON_RECURRING:
                available = False
            else:
                result = ConflictValidator.check(context, start, end)
                if result.conflict:
                    available, reason, locked_until = False, result.reason, None
                else:
                    available = reason is None

            entry["available"] = available
            entry["reason"] = reason
            if locked_until is not None:
                entry[_LOCKED_UNTIL] = locked_until.isoformat()
            grid.append(entry)

        available_count = sum(1 for slot in grid if slot["available"])
        logger.info(f"Provider {provider_id} on {day}: {available_count} available, "
                    f"{len(grid) - available_count} unavailable slots")
        return grid
