# ============================================================================
# booking_scheduler/services/availability/conflict_validator.py
# ============================================================================
"""Decides whether a proposed time range collides with existing commitments"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from booking_scheduler.models import Appointment, BlockedTimeSlot, RecurringException
from booking_scheduler.schemas.scheduling import (
    ConflictResult,
    ConflictType,
    InstanceStatus,
    ResolvedOccurrence,
    is_active_status,
)
from booking_scheduler.services.appointment.instance_merger import InstanceKey, InstanceMerger
from booking_scheduler.services.recurrence.exception_resolver import ExceptionResolver
from booking_scheduler.services.recurrence.recurrence_expander import SeriesDefinition
from booking_scheduler.services.repository.scheduling_repository import SchedulingRepository
from booking_scheduler.utils.datetime_utils import (
    as_date,
    combine_local,
    js_weekday,
    overlaps,
    to_utc,
)

logger = logging.getLogger(__name__)

REASON_OCCUPIED = "occupied"
REASON_OCCUPIED_RECURRING = "occupied by recurring appointment"
REASON_OCCUPIED_EXTERNAL = "occupied by external booking"
REASON_MANUALLY_BLOCKED = "manually blocked"
REASON_RECURRING = "blocked by recurring appointment"

# Expansion margin around the checked range, covers overnight occurrences
_MARGIN = timedelta(days=1)


@dataclass
class ConflictContext:
    """Everything the validator needs for one provider over one range, read once"""
    provider_id: UUID
    range_start: datetime
    range_end: datetime
    appointments: List[Appointment] = field(default_factory=list)
    blocked_windows: List[BlockedTimeSlot] = field(default_factory=list)
    series: List[SeriesDefinition] = field(default_factory=list)
    exceptions: List[RecurringException] = field(default_factory=list)
    _recurring: Optional[List[Tuple[SeriesDefinition, ResolvedOccurrence]]] = None
    _standing: Optional[List[Appointment]] = None

    def standing_appointments(self) -> List[Appointment]:
        """Persisted rows, minus recurring base rows replaced by an exception on their own day"""
        if self._standing is None:
            self._standing = [appointment for appointment in self.appointments
                              if not ExceptionResolver.overrides_base_row(appointment, self.exceptions)]
        return self._standing

    def recurring_occurrences(self) -> List[Tuple[SeriesDefinition, ResolvedOccurrence]]:
        """Active (series, occurrence) pairs not already materialized as persisted rows"""
        if self._recurring is None:
            self._recurring = ConflictValidator.virtual_occurrences(self)
        return self._recurring


class ConflictValidator:
    """
    Checks, in order, returning the first hit:
    1. active persisted appointments
    2. manually blocked windows
    3. occurrences of active recurring series
    Overlap is half-open, so back-to-back ranges never conflict.
    """

    @staticmethod
    def has_conflict(
            db: Session,
            provider_id: Any,
            start: datetime,
            end: datetime,
            exclude_appointment_id: Any = None,
            exclude_occurrence: Optional[Tuple[Any, date]] = None
    ) -> ConflictResult:
        context = ConflictValidator.load_context(db, provider_id, start, end)
        return ConflictValidator.check(context, start, end, exclude_appointment_id, exclude_occurrence)

    @staticmethod
    def load_context(db: Session, provider_id: Any, range_start: datetime, range_end: datetime) -> ConflictContext:
        provider_id = provider_id if isinstance(provider_id, UUID) else UUID(str(provider_id))
        range_start, range_end = to_utc(range_start), to_utc(range_end)

        appointments = SchedulingRepository.list_appointments(
            db, provider_id=provider_id, range_start=range_start - _MARGIN, range_end=range_end + _MARGIN
        )
        blocked = SchedulingRepository.list_blocked_windows(db, provider_id)

        series = [SeriesDefinition.from_rule(rule)
                  for rule in SchedulingRepository.list_active_recurring_rules(db, provider_id=provider_id)]
        series += [SeriesDefinition.from_base_appointment(appointment)
                   for appointment in SchedulingRepository.list_recurring_base_appointments(db, provider_id=provider_id)
                   if is_active_status(appointment.status)]

        exceptions = SchedulingRepository.list_exceptions(db, [item.id for item in series])

        return ConflictContext(
            provider_id=provider_id,
            range_start=range_start,
            range_end=range_end,
            appointments=appointments,
            blocked_windows=blocked,
            series=series,
            exceptions=exceptions,
        )

    @staticmethod
    def check(
            context: ConflictContext,
            start: datetime,
            end: datetime,
            exclude_appointment_id: Any = None,
            exclude_occurrence: Optional[Tuple[Any, date]] = None
    ) -> ConflictResult:
        """Pure check against preloaded data."""
        start, end = to_utc(start), to_utc(end)
        if end <= start:
            raise ValueError(f"Invalid range: end {end} is not after start {start}")

        excluded_id = str(exclude_appointment_id) if exclude_appointment_id else None

        result = ConflictValidator._check_appointments(context.standing_appointments(), start, end, excluded_id)
        if result.conflict:
            return result

        result = ConflictValidator._check_blocked_windows(context.blocked_windows, start, end)
        if result.conflict:
            return result

        return ConflictValidator._check_recurring(context, start, end, exclude_occurrence)

    # ------------------------------------------------------------------

    @staticmethod
    def _check_appointments(
            appointments: Sequence[Appointment],
            start: datetime,
            end: datetime,
            excluded_id: Optional[str]
    ) -> ConflictResult:
        for appointment in appointments:
            if excluded_id and str(appointment.id) == excluded_id:
                continue
            if not is_active_status(appointment.status):
                continue
            if not overlaps(start, end, appointment.start_time, appointment.end_time):
                continue

            if appointment.is_recurring_instance or InstanceMerger.is_recurring_base(appointment):
                reason = REASON_OCCUPIED_RECURRING
            elif appointment.external_booking:
                reason = REASON_OCCUPIED_EXTERNAL
            else:
                reason = REASON_OCCUPIED

            return ConflictResult(
                conflict=True,
                reason=reason,
                conflict_type=ConflictType.APPOINTMENT,
                details={
                    "appointment_id": str(appointment.id),
                    "start_time": to_utc(appointment.start_time).isoformat(),
                    "end_time": to_utc(appointment.end_time).isoformat(),
                },
            )
        return ConflictResult.clear()

    @staticmethod
    def block_intervals(window: BlockedTimeSlot, day: date) -> Optional[Tuple[datetime, datetime]]:
        """Absolute interval a blocked window covers on ``day``, if it applies to that day"""
        if window.day not in (-1, js_weekday(day)):
            return None
        start_hour = max(0, min(int(window.start_hour), 24))
        end_hour = max(0, min(int(window.end_hour), 24))
        if end_hour <= start_hour:
            return None
        block_start = combine_local(day, time(hour=start_hour))
        if end_hour == 24:
            block_end = combine_local(day + timedelta(days=1), time.min)
        else:
            block_end = combine_local(day, time(hour=end_hour))
        return block_start, block_end

    @staticmethod
    def _check_blocked_windows(
            windows: Sequence[BlockedTimeSlot],
            start: datetime,
            end: datetime
    ) -> ConflictResult:
        first_day = as_date(start)
        last_day = as_date(end)

        day = first_day
        while day <= last_day:
            for window in windows:
                interval = ConflictValidator.block_intervals(window, day)
                if interval is None or not overlaps(start, end, *interval):
                    continue
                reason = REASON_MANUALLY_BLOCKED
                if window.note:
                    reason = f"{reason}: {window.note}"
                return ConflictResult(
                    conflict=True,
                    reason=reason,
                    conflict_type=ConflictType.MANUAL_BLOCK,
                    details={"blocked_slot_id": str(window.id), "note": window.note, "day": window.day},
                )
            day += timedelta(days=1)
        return ConflictResult.clear()

    @staticmethod
    def virtual_occurrences(context: ConflictContext) -> List[Tuple[SeriesDefinition, ResolvedOccurrence]]:
        persisted_keys: Set[InstanceKey] = {
            InstanceKey.of(appointment.provider_id, appointment.start_time, appointment.end_time)
            for appointment in context.standing_appointments()
        }

        window_start = as_date(context.range_start - _MARGIN)
        window_end = as_date(context.range_end + _MARGIN)

        pairs = []
        for series in context.series:
            resolved = ExceptionResolver.expand_and_resolve(series, window_start, window_end, context.exceptions)
            moved = ExceptionResolver.moved_in(series, context.exceptions, resolved)
            for item in ExceptionResolver.active(resolved) + moved:
                if InstanceKey.of(series.provider_id, item.effective_start, item.effective_end) in persisted_keys:
                    continue
                pairs.append((series, item))
        return pairs

    @staticmethod
    def _check_recurring(
            context: ConflictContext,
            start: datetime,
            end: datetime,
            exclude_occurrence: Optional[Tuple[Any, date]]
    ) -> ConflictResult:
        for series, occurrence in context.recurring_occurrences():
            if exclude_occurrence and str(series.id) == str(exclude_occurrence[0]) \
                    and occurrence.occurrence_date == exclude_occurrence[1]:
                continue
            if not overlaps(start, end, occurrence.effective_start, occurrence.effective_end):
                continue
            return ConflictResult(
                conflict=True,
                reason=REASON_RECURRING,
                conflict_type=ConflictType.RECURRING,
                details={
                    "series_id": str(series.id),
                    "occurrence_date": occurrence.occurrence_date.isoformat(),
                    "start_time": to_utc(occurrence.effective_start).isoformat(),
                    "end_time": to_utc(occurrence.effective_end).isoformat(),
                    "rescheduled": occurrence.status is InstanceStatus.RESCHEDULED,
                },
            )
        return ConflictResult.clear()
