# ============================================================================
# booking_scheduler/services/appointment/appointment_service.py
# ============================================================================
"""Calendar assembly and appointment / occurrence lifecycle"""
import logging
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_scheduler.core.errors import (
    MSG_SLOT_TAKEN,
    InvalidRecurrenceError,
    InvalidTransitionError,
    NotFoundError,
    SlotConflictError,
    translate_db_error,
)
from booking_scheduler.core.retry import RetryPolicy
from booking_scheduler.models import Appointment, RecurringException, RecurringRule
from booking_scheduler.schemas.scheduling import (
    AppointmentInstance,
    AppointmentStatus,
    ExceptionAction,
    INACTIVE_STATUSES,
    is_active_status,
    parse_recurrence,
)
from booking_scheduler.services.appointment.instance_merger import InstanceMerger
from booking_scheduler.services.availability.conflict_validator import ConflictValidator
from booking_scheduler.services.events.event_bus import EventType, get_event_bus
from booking_scheduler.services.recurrence.exception_resolver import ExceptionResolver
from booking_scheduler.services.recurrence.recurrence_expander import RecurrenceExpander, SeriesDefinition
from booking_scheduler.services.repository.scheduling_repository import SchedulingRepository
from booking_scheduler.utils.datetime_utils import ensure_aware, overlaps, to_local, to_utc, utc_now

logger = logging.getLogger(__name__)

ROLE_PROVIDER = "provider"
ROLE_CLIENT = "client"

# Allowed status changes; anything else is rejected
STATUS_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.CONFIRMED, AppointmentStatus.REJECTED, AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.REJECTED: frozenset(),
}

# Statuses the completion sweep moves to completed once the end time passed
SWEEPABLE_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.SCHEDULED)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Commit failed while trying to {action}: {e}")
        raise translate_db_error(e, action) from e


class AppointmentService:
    """Handles appointment and recurring occurrence operations"""

    # ========== CALENDAR ==========

    @staticmethod
    def get_calendar(
            db: Session,
            user_id: Any,
            role: str,
            start: datetime,
            end: datetime,
            include_completed: bool = True,
            now: Optional[datetime] = None
    ) -> List[AppointmentInstance]:
        """
        Persisted appointments plus virtual occurrences of every recurring
        series the user takes part in, without duplicates, ordered by start.
        """
        if role not in (ROLE_PROVIDER, ROLE_CLIENT):
            raise ValueError(f"Unknown calendar role: {role}")
        if ensure_aware(end) <= ensure_aware(start):
            raise InvalidRecurrenceError(f"Calendar range end {end} is not after start {start}")

        owner = {"provider_id": user_id} if role == ROLE_PROVIDER else {"client_id": user_id}

        persisted = SchedulingRepository.list_appointments(db, range_start=start, range_end=end, **owner)
        series = AppointmentService._series_for(db, **owner)
        exceptions = SchedulingRepository.list_exceptions(db, [item.id for item in series])

        # A base row whose own day was cancelled or moved yields to its resolved occurrence
        persisted = [appointment for appointment in persisted
                     if not ExceptionResolver.overrides_base_row(appointment, exceptions)]

        virtual = []
        for item in series:
            resolved_in_range = ExceptionResolver.expand_and_resolve(item, start, end, exceptions)
            moved = ExceptionResolver.moved_in(item, exceptions, resolved_in_range)
            for resolved in resolved_in_range + moved:
                instance = InstanceMerger.from_resolved(item, resolved, now=now)
                if instance is None:
                    continue
                # A reschedule can move an occurrence out of the requested range
                if not overlaps(instance.start_time, instance.end_time, start, end):
                    continue
                virtual.append(instance)

        instances = InstanceMerger.merge(persisted, virtual)
        if not include_completed:
            instances = [item for item in instances if item.status is not AppointmentStatus.COMPLETED]

        logger.debug(f"Calendar for {role} {user_id}: {len(persisted)} persisted, "
                     f"{len(virtual)} virtual, {len(instances)} merged")
        return instances

    @staticmethod
    def _series_for(db: Session, provider_id: Any = None, client_id: Any = None) -> List[SeriesDefinition]:
        series = [SeriesDefinition.from_rule(rule) for rule in
                  SchedulingRepository.list_active_recurring_rules(db, provider_id=provider_id, client_id=client_id)]
        for appointment in SchedulingRepository.list_recurring_base_appointments(
                db, provider_id=provider_id, client_id=client_id):
            if is_active_status(appointment.status):
                series.append(SeriesDefinition.from_base_appointment(appointment))
        return series

    @staticmethod
    def get_series(db: Session, series_id: Any) -> SeriesDefinition:
        """A series is either a recurring rule or a recurring base appointment."""
        rule = SchedulingRepository.get_rule(db, series_id)
        if rule is not None:
            return SeriesDefinition.from_rule(rule)

        appointment = SchedulingRepository.get_appointment(db, series_id)
        if appointment is not None and InstanceMerger.is_recurring_base(appointment):
            return SeriesDefinition.from_base_appointment(appointment)

        raise NotFoundError(f"Recurring series {series_id} not found")

    @staticmethod
    def _require_occurrence(series: SeriesDefinition, occurrence_date: date) -> None:
        if not RecurrenceExpander.expand(series, occurrence_date, occurrence_date):
            raise InvalidRecurrenceError(f"{occurrence_date} is not an occurrence of series {series.id}")

    # ========== OCCURRENCE EXCEPTIONS ==========

    @staticmethod
    def cancel_occurrence(
            db: Session,
            series_id: Any,
            occurrence_date: date,
            notes: Optional[str] = None
    ) -> RecurringException:
        series = AppointmentService.get_series(db, series_id)
        AppointmentService._require_occurrence(series, occurrence_date)

        exception = SchedulingRepository.insert_exception(
            db, series.id, occurrence_date, ExceptionAction.CANCELLED,
            original_date=occurrence_date, notes=notes,
        )
        _commit(db, "cancel occurrence")
        logger.info(f"Cancelled occurrence {occurrence_date} of series {series.id}")

        get_event_bus().emit(EventType.EXCEPTION_CREATED, series.provider_id,
                             series_id=series.id, date=occurrence_date, action=ExceptionAction.CANCELLED.value)
        return exception

    @staticmethod
    def reschedule_occurrence(
            db: Session,
            series_id: Any,
            occurrence_date: date,
            new_start: datetime,
            new_end: datetime,
            notes: Optional[str] = None
    ) -> RecurringException:
        """Move one occurrence; the new time must be free like any other booking."""
        if ensure_aware(new_end) <= ensure_aware(new_start):
            raise InvalidRecurrenceError("The new end time must be after the new start time")

        series = AppointmentService.get_series(db, series_id)
        AppointmentService._require_occurrence(series, occurrence_date)

        # The base appointment row occupies its own first occurrence
        exclude_appointment_id = None
        if not series.from_rule and series.start_date == occurrence_date:
            exclude_appointment_id = series.id

        conflict = ConflictValidator.has_conflict(
            db, series.provider_id, new_start, new_end,
            exclude_appointment_id=exclude_appointment_id,
            exclude_occurrence=(series.id, occurrence_date),
        )
        if conflict.conflict:
            logger.info(f"Reschedule of {series.id} on {occurrence_date} refused: {conflict.reason}")
            raise SlotConflictError(MSG_SLOT_TAKEN, reason=conflict.reason)

        exception = SchedulingRepository.insert_exception(
            db, series.id, occurrence_date, ExceptionAction.RESCHEDULED,
            original_date=occurrence_date, new_start_time=new_start, new_end_time=new_end, notes=notes,
        )
        _commit(db, "reschedule occurrence")
        logger.info(f"Rescheduled occurrence {occurrence_date} of series {series.id} to {to_utc(new_start)}")

        get_event_bus().emit(EventType.EXCEPTION_CREATED, series.provider_id,
                             series_id=series.id, date=occurrence_date, action=ExceptionAction.RESCHEDULED.value)
        return exception

    @staticmethod
    def restore_occurrence(db: Session, series_id: Any, occurrence_date: date) -> int:
        """Undo a cancel / reschedule by deleting the exception."""
        series = AppointmentService.get_series(db, series_id)
        deleted = SchedulingRepository.delete_exception(db, series.id, occurrence_date)
        if not deleted:
            db.rollback()
            raise NotFoundError(f"No exception for series {series.id} on {occurrence_date}")

        _commit(db, "restore occurrence")
        logger.info(f"Restored occurrence {occurrence_date} of series {series.id}")
        get_event_bus().emit(EventType.EXCEPTION_DELETED, series.provider_id,
                             series_id=series.id, date=occurrence_date)
        return deleted

    # ========== STATUS ==========

    @staticmethod
    def update_status(
            db: Session,
            appointment_id: Any,
            new_status: Any,
            reason: Optional[str] = None
    ) -> Appointment:
        appointment = SchedulingRepository.get_appointment(db, appointment_id)
        if appointment is None:
            raise NotFoundError(f"Appointment {appointment_id} not found")

        try:
            target = AppointmentStatus(new_status)
            current = AppointmentStatus(appointment.status)
        except ValueError as e:
            raise InvalidTransitionError(str(e)) from e

        if target is current:
            return appointment
        if target not in STATUS_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot change appointment from {current.value} to {target.value}"
            )

        SchedulingRepository.update_appointment_status(db, appointment.id, target, cancellation_reason=reason)
        released = 0
        if target in INACTIVE_STATUSES:
            released = SchedulingRepository.release_appointment_slots(db, appointment)
        _commit(db, "update appointment status")

        logger.info(f"Appointment {appointment.id}: {current.value} -> {target.value}"
                    + (f", released {released} slots" if released else ""))

        event_type = EventType.APPOINTMENT_CANCELLED if target in INACTIVE_STATUSES else EventType.APPOINTMENT_UPDATED
        get_event_bus().emit(event_type, appointment.provider_id,
                             appointment_id=appointment.id, status=target.value)
        return appointment

    # ========== BOOKING ==========

    @staticmethod
    def create_booking(
            db: Session,
            provider_id: Any,
            start_time: datetime,
            end_time: datetime,
            client_id: Any = None,
            listing_id: Any = None,
            recurrence: Any = None,
            status: Any = AppointmentStatus.PENDING,
            retry_policy: Optional[RetryPolicy] = None,
            **details
    ) -> Appointment:
        """
        Validate, then insert. Transient store failures are retried for the
        same slot; a conflict is final and surfaces as SlotConflictError.
        """
        if ensure_aware(end_time) <= ensure_aware(start_time):
            raise InvalidRecurrenceError("Appointment end time must be after its start time")

        cadence = parse_recurrence(recurrence)
        if cadence is None:
            raise InvalidRecurrenceError(f"Unknown recurrence type: {recurrence!r}")

        policy = retry_policy or RetryPolicy.from_settings()

        def attempt() -> Appointment:
            conflict = ConflictValidator.has_conflict(db, provider_id, start_time, end_time)
            if conflict.conflict:
                raise SlotConflictError(MSG_SLOT_TAKEN, reason=conflict.reason)

            appointment = SchedulingRepository.create_appointment(
                db,
                provider_id=provider_id,
                client_id=client_id,
                listing_id=listing_id,
                start_time=start_time,
                end_time=end_time,
                status=AppointmentStatus(status).value,
                recurrence=cadence.value,
                **details,
            )
            _commit(db, "create appointment")
            return appointment

        appointment = policy.call(
            attempt,
            on_retry=lambda number, exc: logger.warning(f"Booking attempt {number} for provider {provider_id} "
                                                        f"failed: {exc}"),
        )
        logger.info(f"Created appointment {appointment.id} for provider {provider_id} at {to_utc(start_time)}")

        get_event_bus().emit(EventType.APPOINTMENT_CREATED, appointment.provider_id,
                             appointment_id=appointment.id, start_time=appointment.start_time)
        return appointment

    # ========== SERIES ==========

    @staticmethod
    def deactivate_rule(db: Session, rule_id: Any) -> RecurringRule:
        """Cancel a whole series; the rule row is kept for history."""
        rule = SchedulingRepository.deactivate_rule(db, rule_id)
        if rule is None:
            raise NotFoundError(f"Recurring rule {rule_id} not found")
        _commit(db, "deactivate recurring rule")
        logger.info(f"Deactivated recurring rule {rule.id}")

        get_event_bus().emit(EventType.APPOINTMENT_CANCELLED, rule.provider_id, recurring_rule_id=rule.id)
        return rule

    # ========== SWEEP ==========

    @staticmethod
    def complete_past_appointments(db: Session, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        appointments = SchedulingRepository.list_past_open_appointments(db, now, SWEEPABLE_STATUSES)
        if not appointments:
            return 0

        providers = set()
        for appointment in appointments:
            # Recurring bases keep defining their series after the first date
            if InstanceMerger.is_recurring_base(appointment):
                continue
            appointment.status = AppointmentStatus.COMPLETED.value
            providers.add(appointment.provider_id)

        _commit(db, "complete past appointments")
        completed = sum(1 for appointment in appointments
                        if appointment.status == AppointmentStatus.COMPLETED.value)
        logger.info(f"Marked {completed} appointments as completed (as of {to_local(now).isoformat()})")

        for provider_id in providers:
            get_event_bus().emit(EventType.APPOINTMENT_UPDATED, provider_id, status=AppointmentStatus.COMPLETED.value)
        return completed
