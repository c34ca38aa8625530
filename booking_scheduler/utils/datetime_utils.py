# booking_scheduler/utils/datetime_utils.py
"""Date/time helpers shared by the recurrence, merge and validation code"""
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Union
from zoneinfo import ZoneInfo

from booking_scheduler.config.settings import get_settings

DateLike = Union[date, datetime]


@lru_cache()
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def get_timezone() -> ZoneInfo:
    """Timezone in which rule times-of-day are interpreted"""
    return _zone(get_settings().DEFAULT_TIMEZONE)


def ensure_aware(value: datetime) -> datetime:
    """Naive timestamps coming back from the store are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_utc(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(timezone.utc)


def to_local(value: datetime) -> datetime:
    return ensure_aware(value).astimezone(get_timezone())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_date(value: DateLike) -> date:
    """Calendar day of a bound; datetimes are read in the scheduling timezone."""
    if isinstance(value, datetime):
        return to_local(value).date()
    return value


def combine_local(day: date, at: time) -> datetime:
    return datetime.combine(day, at.replace(tzinfo=None), tzinfo=get_timezone())


def day_bounds(day: date):
    """[start, end) of a calendar day in the scheduling timezone"""
    start = combine_local(day, time.min)
    return start, combine_local(day + timedelta(days=1), time.min)


def js_weekday(day: date) -> int:
    """Weekday with 0=Sunday ... 6=Saturday, the convention stored in rules and blocks."""
    return (day.weekday() + 1) % 7


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open interval overlap; back-to-back ranges do not overlap."""
    return ensure_aware(start) < ensure_aware(other_end) and ensure_aware(end) > ensure_aware(other_start)
