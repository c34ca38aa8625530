# ============================================================================
# booking_scheduler/services/recurrence/exception_resolver.py
# ============================================================================
"""Applies per-date exceptions (cancel / skip / reschedule) to expanded occurrences"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from booking_scheduler.models.recurring_exception import RecurringException
from booking_scheduler.schemas.scheduling import (
    ExceptionAction,
    InstanceStatus,
    Occurrence,
    ResolvedOccurrence,
    is_recurring,
)
from booking_scheduler.services.recurrence.recurrence_expander import RecurrenceExpander, SeriesDefinition
from booking_scheduler.utils.datetime_utils import DateLike, ensure_aware, to_local

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created(exception: RecurringException) -> datetime:
    return ensure_aware(exception.created_at) if exception.created_at else _EPOCH


class ExceptionResolver:
    """
    Resolution is keyed by (series id, calendar day). An exception is found
    through either its exception_date or its original_date, so a reschedule
    recorded against the new day still suppresses the original one.
    """

    @staticmethod
    def index_exceptions(series_id: Any, exceptions: Iterable[RecurringException]) -> Dict[date, RecurringException]:
        index: Dict[date, RecurringException] = {}
        for exception in exceptions:
            if str(exception.appointment_id) != str(series_id):
                continue

            days = {exception.exception_date}
            if exception.original_date:
                days.add(exception.original_date)

            for day in days:
                current = index.get(day)
                if current is None:
                    index[day] = exception
                    continue
                if current.id == exception.id:
                    continue
                logger.warning(
                    f"Duplicate exceptions for series {series_id} on {day}: "
                    f"{current.id} and {exception.id}, keeping the most recent"
                )
                if _created(exception) >= _created(current):
                    index[day] = exception
        return index

    @staticmethod
    def resolve(
            series_id: Any,
            occurrences: Sequence[Occurrence],
            exceptions: Iterable[RecurringException]
    ) -> List[ResolvedOccurrence]:
        index = ExceptionResolver.index_exceptions(series_id, exceptions)
        return [ExceptionResolver._resolve_one(series_id, occurrence, index.get(occurrence.occurrence_date))
                for occurrence in occurrences]

    @staticmethod
    def _resolve_one(
            series_id: Any,
            occurrence: Occurrence,
            exception: Optional[RecurringException]
    ) -> ResolvedOccurrence:
        resolved = ResolvedOccurrence(
            occurrence_date=occurrence.occurrence_date,
            status=InstanceStatus.SCHEDULED,
            effective_start=occurrence.start,
            effective_end=occurrence.end,
            original_start=occurrence.start,
            original_end=occurrence.end,
        )
        if exception is None:
            return resolved

        try:
            action = ExceptionAction(exception.action_type)
        except ValueError:
            logger.warning(f"Unknown exception action {exception.action_type!r} on series {series_id}, ignoring")
            return resolved

        resolved.exception_id = exception.id
        resolved.exception_notes = exception.notes

        if action in (ExceptionAction.CANCELLED, ExceptionAction.SKIP):
            resolved.status = InstanceStatus.CANCELLED
            resolved.effective_start = None
            resolved.effective_end = None
            return resolved

        if exception.new_start_time is None or exception.new_end_time is None:
            logger.warning(
                f"Rescheduled exception {exception.id} for series {series_id} has no new times, "
                f"keeping the original slot"
            )
            return resolved

        resolved.status = InstanceStatus.RESCHEDULED
        resolved.effective_start = ensure_aware(exception.new_start_time)
        resolved.effective_end = ensure_aware(exception.new_end_time)
        return resolved

    @staticmethod
    def active(resolved: Iterable[ResolvedOccurrence]) -> List[ResolvedOccurrence]:
        return [item for item in resolved if item.status is not InstanceStatus.CANCELLED]

    @staticmethod
    def expand_and_resolve(
            series: Any,
            window_start: DateLike,
            window_end: DateLike,
            exceptions: Iterable[RecurringException],
            max_instances: Optional[int] = None
    ) -> List[ResolvedOccurrence]:
        """Expander + resolver in one call, for a single series."""
        series = SeriesDefinition.coerce(series)
        occurrences = RecurrenceExpander.expand(series, window_start, window_end, max_instances)
        return ExceptionResolver.resolve(series.id, occurrences, exceptions)

    @staticmethod
    def moved_in(
            series: Any,
            exceptions: Iterable[RecurringException],
            already_resolved: Iterable[ResolvedOccurrence] = ()
    ) -> List[ResolvedOccurrence]:
        """
        Rescheduled occurrences of ``series`` not covered by ``already_resolved``.

        Expanding a window only finds reschedules whose original day lies in
        it, while the new time may land anywhere. Callers pass what their own
        expansion resolved and filter the result on the effective times.
        Exceptions pointing at a day the series never produces are ignored.
        """
        series = SeriesDefinition.coerce(series)
        handled = {str(item.exception_id) for item in already_resolved if item.exception_id is not None}

        moved = []
        for day, exception in sorted(ExceptionResolver.index_exceptions(series.id, exceptions).items()):
            if str(exception.id) in handled:
                continue
            if exception.action_type != ExceptionAction.RESCHEDULED.value:
                continue
            if day != (exception.original_date or exception.exception_date):
                continue

            occurrences = RecurrenceExpander.expand(series, day, day)
            if not occurrences:
                logger.warning(f"Exception {exception.id} moves {day}, which is not an occurrence of series {series.id}")
                continue

            resolved = ExceptionResolver._resolve_one(series.id, occurrences[0], exception)
            if resolved.status is InstanceStatus.RESCHEDULED:
                handled.add(str(exception.id))
                moved.append(resolved)
        return moved

    @staticmethod
    def overrides_base_row(appointment: Any, exceptions: Iterable[RecurringException]) -> bool:
        """
        True for the persisted row of a recurring base appointment whose own
        day carries an exception. The resolved occurrence for that day takes
        the row's place: moved when rescheduled, gone when cancelled.
        """
        if appointment.is_recurring_instance or not is_recurring(appointment.recurrence):
            return False
        first_day = to_local(appointment.start_time).date()
        return first_day in ExceptionResolver.index_exceptions(appointment.id, exceptions)
