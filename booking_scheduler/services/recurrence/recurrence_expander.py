# ============================================================================
# booking_scheduler/services/recurrence/recurrence_expander.py
# Pure recurrence expansion - no database access
# ============================================================================
"""Expands recurring rules and recurring base appointments into dated occurrences"""
import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, List, Optional
from uuid import UUID

from booking_scheduler.config.settings import get_settings
from booking_scheduler.models.appointment import Appointment
from booking_scheduler.models.recurring_rule import RecurringRule
from booking_scheduler.schemas.scheduling import (
    Occurrence,
    RecurrenceType,
    WEEKLY_STEP_DAYS,
    is_active_status,
    parse_recurrence,
)
from booking_scheduler.utils.datetime_utils import (
    DateLike,
    as_date,
    combine_local,
    ensure_aware,
    js_weekday,
    to_local,
)

logger = logging.getLogger(__name__)


@dataclass
class SeriesDefinition:
    """
    Common view over the two kinds of recurring series: rows of
    ``recurring_rules`` and appointments flagged as a recurring base.
    """
    id: UUID
    provider_id: UUID
    client_id: Optional[UUID]
    listing_id: Optional[UUID]
    recurrence_type: Any
    start_date: Optional[date]
    start_time: Optional[time]
    end_time: Optional[time]
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    is_active: bool = True
    from_rule: bool = True
    source: Any = None

    @classmethod
    def from_rule(cls, rule: RecurringRule) -> "SeriesDefinition":
        return cls(
            id=rule.id,
            provider_id=rule.provider_id,
            client_id=rule.client_id,
            listing_id=rule.listing_id,
            recurrence_type=rule.recurrence_type,
            start_date=rule.start_date,
            start_time=rule.start_time,
            end_time=rule.end_time,
            day_of_week=rule.day_of_week,
            day_of_month=rule.day_of_month,
            is_active=bool(rule.is_active) if rule.is_active is not None else True,
            from_rule=True,
            source=rule,
        )

    @classmethod
    def from_base_appointment(cls, appointment: Appointment) -> "SeriesDefinition":
        local_start = to_local(appointment.start_time)
        duration = ensure_aware(appointment.end_time) - ensure_aware(appointment.start_time)
        local_end = local_start + duration
        return cls(
            id=appointment.id,
            provider_id=appointment.provider_id,
            client_id=appointment.client_id,
            listing_id=appointment.listing_id,
            recurrence_type=appointment.recurrence,
            start_date=local_start.date(),
            start_time=local_start.time(),
            end_time=local_end.time(),
            day_of_week=js_weekday(local_start.date()),
            day_of_month=local_start.day,
            is_active=is_active_status(appointment.status),
            from_rule=False,
            source=appointment,
        )

    @classmethod
    def coerce(cls, value: Any) -> "SeriesDefinition":
        if isinstance(value, SeriesDefinition):
            return value
        if isinstance(value, RecurringRule):
            return cls.from_rule(value)
        if isinstance(value, Appointment):
            return cls.from_base_appointment(value)
        raise TypeError(f"Cannot build a recurring series from {type(value).__name__}")


class RecurrenceExpander:
    """Turns a series plus a date window into ordered candidate occurrences"""

    @staticmethod
    def rule_from_base_appointment(appointment: Appointment) -> SeriesDefinition:
        return SeriesDefinition.from_base_appointment(appointment)

    @staticmethod
    def expand(
            series: Any,
            window_start: DateLike,
            window_end: DateLike,
            max_instances: Optional[int] = None
    ) -> List[Occurrence]:
        """
        Expand one series over [window_start, window_end].

        Malformed input never raises: an empty list is returned and a warning
        logged, since an empty calendar is a safe degradation.
        """
        series = SeriesDefinition.coerce(series)
        limit = max_instances or get_settings().MAX_INSTANCES_PER_RULE

        if not series.is_active:
            logger.debug(f"Series {series.id} is inactive, skipping expansion")
            return []

        recurrence = parse_recurrence(series.recurrence_type)
        if recurrence is None:
            logger.warning(f"Unknown recurrence type {series.recurrence_type!r} for series {series.id}")
            return []
        if recurrence is RecurrenceType.NONE:
            return []

        if series.start_date is None or series.start_time is None or series.end_time is None:
            logger.warning(f"Series {series.id} is missing its start date or times")
            return []

        first_day = as_date(window_start)
        last_day = as_date(window_end)
        if first_day > last_day:
            logger.warning(f"Inverted window {first_day} > {last_day} for series {series.id}")
            return []
        if series.start_date > last_day:
            return []

        if recurrence is RecurrenceType.MONTHLY:
            days = RecurrenceExpander._monthly_dates(series, first_day, last_day)
        else:
            days = RecurrenceExpander._weekly_dates(series, WEEKLY_STEP_DAYS[recurrence], first_day, last_day)

        occurrences: List[Occurrence] = []
        for day in days:
            start, end = RecurrenceExpander.occurrence_times(series, day)
            if isinstance(window_start, datetime) and start < ensure_aware(window_start):
                continue
            if isinstance(window_end, datetime) and start > ensure_aware(window_end):
                break
            occurrences.append(Occurrence(occurrence_date=day, start=start, end=end))
            if len(occurrences) >= limit:
                logger.warning(f"Series {series.id} hit the cap of {limit} occurrences")
                break

        return occurrences

    @staticmethod
    def expand_many(
            series_list: Iterable[Any],
            window_start: DateLike,
            window_end: DateLike,
            max_instances: Optional[int] = None
    ) -> List[tuple]:
        """Expand several series; returns (series, occurrence) pairs ordered by start."""
        pairs = []
        for item in series_list:
            series = SeriesDefinition.coerce(item)
            for occurrence in RecurrenceExpander.expand(series, window_start, window_end, max_instances):
                pairs.append((series, occurrence))
        pairs.sort(key=lambda pair: pair[1].start)
        return pairs

    @staticmethod
    def occurrence_times(series: SeriesDefinition, day: date):
        start = combine_local(day, series.start_time)
        end = combine_local(day, series.end_time)
        if end <= start:
            # Finishes after midnight
            end += timedelta(days=1)
        return start, end

    @staticmethod
    def _weekly_dates(series: SeriesDefinition, step: int, first_day: date, last_day: date) -> Iterable[date]:
        """
        Stepping is anchored on the first matching weekday on or after
        start_date, not on the window start, so biweekly and triweekly
        parity is the same whatever window is queried.
        """
        target = series.day_of_week
        if target is None:
            target = js_weekday(series.start_date)
        if not 0 <= target <= 6:
            logger.warning(f"Invalid day_of_week {target} for series {series.id}")
            return

        # First matching weekday on/after the rule start anchors the cycle
        anchor = series.start_date + timedelta(days=(target - js_weekday(series.start_date)) % 7)
        current = max(anchor, first_day)
        offset = (current - anchor).days % step
        if offset:
            current += timedelta(days=step - offset)

        while current <= last_day:
            yield current
            current += timedelta(days=step)

    @staticmethod
    def _monthly_dates(series: SeriesDefinition, first_day: date, last_day: date) -> Iterable[date]:
        day_of_month = series.day_of_month or series.start_date.day
        if not 1 <= day_of_month <= 31:
            logger.warning(f"Invalid day_of_month {day_of_month} for series {series.id}")
            return

        year, month = series.start_date.year, series.start_date.month
        # Months before the window cannot produce candidates
        if (first_day.year, first_day.month) > (year, month):
            year, month = first_day.year, first_day.month

        while True:
            last_valid = calendar.monthrange(year, month)[1]
            candidate = date(year, month, min(day_of_month, last_valid))
            if candidate > last_day:
                return
            if candidate >= series.start_date and candidate >= first_day:
                yield candidate
            month += 1
            if month > 12:
                year, month = year + 1, 1
