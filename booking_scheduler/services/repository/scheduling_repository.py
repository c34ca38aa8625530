# ============================================================================
# booking_scheduler/services/repository/scheduling_repository.py
# All database access for the scheduling core goes through here
# ============================================================================
"""
Thin query layer over the scheduling tables.

Methods flush but never commit; the calling service owns the transaction and
decides between commit and rollback. Every timestamp is normalized to UTC
before it reaches the database.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_scheduler.core.errors import translate_db_error
from booking_scheduler.models import (
    Appointment,
    BlockedTimeSlot,
    RecurringException,
    RecurringRule,
    TimeSlot,
)
from booking_scheduler.schemas.scheduling import AppointmentStatus, RecurrenceType
from booking_scheduler.utils.datetime_utils import to_utc, utc_now

logger = logging.getLogger(__name__)


def _as_uuid(value: Any) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def _status_values(statuses: Optional[Iterable[Any]]) -> Optional[List[str]]:
    if statuses is None:
        return None
    return [AppointmentStatus(status).value for status in statuses]


class SchedulingRepository:
    """Handles persistence for appointments, rules, exceptions and slots"""

    # ========== APPOINTMENTS ==========

    @staticmethod
    def list_appointments(
            db: Session,
            provider_id: Any = None,
            client_id: Any = None,
            statuses: Optional[Iterable[Any]] = None,
            range_start: Optional[datetime] = None,
            range_end: Optional[datetime] = None,
            exclude_statuses: Optional[Iterable[Any]] = None
    ) -> List[Appointment]:
        """Appointments overlapping [range_start, range_end) for a provider or a client"""
        query = select(Appointment)

        if provider_id is not None:
            query = query.where(Appointment.provider_id == _as_uuid(provider_id))
        if client_id is not None:
            query = query.where(Appointment.client_id == _as_uuid(client_id))

        included = _status_values(statuses)
        if included is not None:
            query = query.where(Appointment.status.in_(included))
        excluded = _status_values(exclude_statuses)
        if excluded:
            query = query.where(Appointment.status.not_in(excluded))

        if range_end is not None:
            query = query.where(Appointment.start_time < to_utc(range_end))
        if range_start is not None:
            query = query.where(Appointment.end_time > to_utc(range_start))

        query = query.order_by(Appointment.start_time)
        try:
            return list(db.execute(query).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list appointments: {e}")
            raise translate_db_error(e, "list appointments") from e

    @staticmethod
    def list_recurring_base_appointments(
            db: Session,
            provider_id: Any = None,
            client_id: Any = None,
            statuses: Optional[Iterable[Any]] = None
    ) -> List[Appointment]:
        """Appointments that define a recurring series (not materialized occurrences)"""
        query = select(Appointment).where(
            Appointment.is_recurring_instance.is_(False),
            Appointment.recurrence.is_not(None),
            Appointment.recurrence != RecurrenceType.NONE.value,
            Appointment.recurrence != "",
        )
        if provider_id is not None:
            query = query.where(Appointment.provider_id == _as_uuid(provider_id))
        if client_id is not None:
            query = query.where(Appointment.client_id == _as_uuid(client_id))

        included = _status_values(statuses)
        if included is not None:
            query = query.where(Appointment.status.in_(included))

        try:
            return list(db.execute(query.order_by(Appointment.start_time)).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list recurring base appointments: {e}")
            raise translate_db_error(e, "list recurring appointments") from e

    @staticmethod
    def get_appointment(db: Session, appointment_id: Any) -> Optional[Appointment]:
        try:
            return db.get(Appointment, _as_uuid(appointment_id))
        except SQLAlchemyError as e:
            raise translate_db_error(e, "get appointment") from e

    @staticmethod
    def create_appointment(db: Session, **fields) -> Appointment:
        for name in ("start_time", "end_time"):
            if fields.get(name) is not None:
                fields[name] = to_utc(fields[name])

        appointment = Appointment(**fields)
        try:
            db.add(appointment)
            db.flush()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to insert appointment for provider {fields.get('provider_id')}: {e}")
            raise translate_db_error(e, "create appointment") from e
        return appointment

    @staticmethod
    def update_appointment_status(
            db: Session,
            appointment_id: Any,
            status: Any,
            cancellation_reason: Optional[str] = None
    ) -> Optional[Appointment]:
        appointment = SchedulingRepository.get_appointment(db, appointment_id)
        if appointment is None:
            return None

        status = AppointmentStatus(status)
        appointment.status = status.value
        if status is AppointmentStatus.CANCELLED:
            appointment.cancelled_at = to_utc(utc_now())
            appointment.cancellation_reason = cancellation_reason

        try:
            db.flush()
        except SQLAlchemyError as e:
            db.rollback()
            raise translate_db_error(e, "update appointment status") from e
        return appointment

    @staticmethod
    def list_past_open_appointments(db: Session, now: datetime, statuses: Iterable[Any]) -> List[Appointment]:
        query = select(Appointment).where(
            Appointment.end_time <= to_utc(now),
            Appointment.status.in_(_status_values(statuses)),
        )
        try:
            return list(db.execute(query).scalars().all())
        except SQLAlchemyError as e:
            raise translate_db_error(e, "list past appointments") from e

    # ========== RECURRING RULES ==========

    @staticmethod
    def list_active_recurring_rules(db: Session, provider_id: Any = None, client_id: Any = None) -> List[RecurringRule]:
        query = select(RecurringRule).where(RecurringRule.is_active.is_(True))
        if provider_id is not None:
            query = query.where(RecurringRule.provider_id == _as_uuid(provider_id))
        if client_id is not None:
            query = query.where(RecurringRule.client_id == _as_uuid(client_id))
        try:
            return list(db.execute(query).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list recurring rules: {e}")
            raise translate_db_error(e, "list recurring rules") from e

    @staticmethod
    def get_rule(db: Session, rule_id: Any) -> Optional[RecurringRule]:
        try:
            return db.get(RecurringRule, _as_uuid(rule_id))
        except SQLAlchemyError as e:
            raise translate_db_error(e, "get recurring rule") from e

    @staticmethod
    def deactivate_rule(db: Session, rule_id: Any) -> Optional[RecurringRule]:
        rule = SchedulingRepository.get_rule(db, rule_id)
        if rule is None:
            return None
        rule.is_active = False
        try:
            db.flush()
        except SQLAlchemyError as e:
            db.rollback()
            raise translate_db_error(e, "deactivate recurring rule") from e
        return rule

    # ========== EXCEPTIONS ==========

    @staticmethod
    def list_exceptions(db: Session, series_ids: Sequence[Any]) -> List[RecurringException]:
        ids = [_as_uuid(series_id) for series_id in series_ids]
        if not ids:
            return []
        query = select(RecurringException).where(RecurringException.appointment_id.in_(ids))
        try:
            return list(db.execute(query).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list recurring exceptions: {e}")
            raise translate_db_error(e, "list exceptions") from e

    @staticmethod
    def get_exception(db: Session, series_id: Any, exception_date: date) -> Optional[RecurringException]:
        query = select(RecurringException).where(
            RecurringException.appointment_id == _as_uuid(series_id),
            or_(
                RecurringException.exception_date == exception_date,
                RecurringException.original_date == exception_date,
            ),
        ).order_by(RecurringException.created_at.desc())
        try:
            return db.execute(query).scalars().first()
        except SQLAlchemyError as e:
            raise translate_db_error(e, "get exception") from e

    @staticmethod
    def insert_exception(
            db: Session,
            series_id: Any,
            exception_date: date,
            action_type: Any,
            original_date: Optional[date] = None,
            new_start_time: Optional[datetime] = None,
            new_end_time: Optional[datetime] = None,
            notes: Optional[str] = None
    ) -> RecurringException:
        """Insert, or overwrite the existing exception for the same series and date"""
        action = getattr(action_type, "value", action_type)
        query = select(RecurringException).where(
            RecurringException.appointment_id == _as_uuid(series_id),
            RecurringException.exception_date == exception_date,
        )
        try:
            exception = db.execute(query).scalars().first()
            if exception is None:
                exception = RecurringException(appointment_id=_as_uuid(series_id), exception_date=exception_date)
                db.add(exception)

            exception.original_date = original_date or exception_date
            exception.action_type = action
            exception.new_start_time = to_utc(new_start_time) if new_start_time else None
            exception.new_end_time = to_utc(new_end_time) if new_end_time else None
            exception.notes = notes
            db.flush()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to store {action} exception for series {series_id} on {exception_date}: {e}")
            raise translate_db_error(e, "insert exception") from e
        return exception

    @staticmethod
    def delete_exception(db: Session, series_id: Any, exception_date: date) -> int:
        statement = delete(RecurringException).where(
            RecurringException.appointment_id == _as_uuid(series_id),
            or_(
                RecurringException.exception_date == exception_date,
                RecurringException.original_date == exception_date,
            ),
        )
        try:
            return db.execute(statement, execution_options={"synchronize_session": False}).rowcount
        except SQLAlchemyError as e:
            db.rollback()
            raise translate_db_error(e, "delete exception") from e

    # ========== BLOCKED WINDOWS ==========

    @staticmethod
    def list_blocked_windows(db: Session, provider_id: Any) -> List[BlockedTimeSlot]:
        query = select(BlockedTimeSlot).where(BlockedTimeSlot.provider_id == _as_uuid(provider_id))
        try:
            return list(db.execute(query).scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list blocked windows for provider {provider_id}: {e}")
            raise translate_db_error(e, "list blocked windows") from e

    # ========== TIME SLOTS ==========

    @staticmethod
    def get_slots(
            db: Session,
            provider_id: Any = None,
            listing_id: Any = None,
            date_from: Optional[date] = None,
            date_to: Optional[date] = None,
            slot_ids: Optional[Sequence[Any]] = None
    ) -> List[TimeSlot]:
        query = select(TimeSlot)
        if provider_id is not None:
            query = query.where(TimeSlot.provider_id == _as_uuid(provider_id))
        if listing_id is not None:
            query = query.where(TimeSlot.listing_id == _as_uuid(listing_id))
        if date_from is not None:
            query = query.where(TimeSlot.slot_date >= date_from)
        if date_to is not None:
            query = query.where(TimeSlot.slot_date <= date_to)
        if slot_ids is not None:
            query = query.where(TimeSlot.id.in_([_as_uuid(slot_id) for slot_id in slot_ids]))
        try:
            return list(db.execute(query.order_by(TimeSlot.slot_datetime_start)).scalars().all())
        except SQLAlchemyError as e:
            raise translate_db_error(e, "get slots") from e

    @staticmethod
    def update_slots(
            db: Session,
            slot_ids: Sequence[Any],
            patch: Dict[str, Any],
            only_lockable: bool = False,
            now: Optional[datetime] = None,
            lock_token: Optional[str] = None
    ) -> int:
        """
        Apply ``patch`` to the given slots in a single UPDATE and return the
        number of rows changed.

        With ``only_lockable`` the statement only touches slots that are
        available, not reserved and not held by an unexpired lock, so the
        caller can compare the row count with ``len(slot_ids)``.

        With ``lock_token`` it only touches available, unreserved slots whose
        lock was taken with that token.
        """
        ids = [_as_uuid(slot_id) for slot_id in slot_ids]
        values = {key: (to_utc(value) if isinstance(value, datetime) else value) for key, value in patch.items()}

        statement = update(TimeSlot).where(TimeSlot.id.in_(ids))
        if only_lockable:
            now = to_utc(now or utc_now())
            statement = statement.where(
                and_(
                    TimeSlot.is_available.is_(True),
                    TimeSlot.is_reserved.is_(False),
                    or_(TimeSlot.blocked_until.is_(None), TimeSlot.blocked_until <= now),
                )
            )
        if lock_token is not None:
            statement = statement.where(
                and_(
                    TimeSlot.is_available.is_(True),
                    TimeSlot.is_reserved.is_(False),
                    TimeSlot.locked_by == lock_token,
                )
            )

        try:
            result = db.execute(statement.values(**values), execution_options={"synchronize_session": False})
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Slot update failed for {len(ids)} slots: {e}")
            raise translate_db_error(e, "update slots") from e
        return result.rowcount

    @staticmethod
    def release_appointment_slots(db: Session, appointment: Appointment) -> int:
        """Free the reserved slots covering an appointment's time range"""
        statement = update(TimeSlot).where(
            TimeSlot.provider_id == appointment.provider_id,
            TimeSlot.slot_datetime_start >= to_utc(appointment.start_time),
            TimeSlot.slot_datetime_end <= to_utc(appointment.end_time),
        )
        if appointment.listing_id is not None:
            statement = statement.where(TimeSlot.listing_id == appointment.listing_id)
        try:
            result = db.execute(
                statement.values(is_reserved=False, is_available=True, blocked_until=None, locked_by=None),
                execution_options={"synchronize_session": False},
            )
        except SQLAlchemyError as e:
            db.rollback()
            raise translate_db_error(e, "release appointment slots") from e
        return result.rowcount
