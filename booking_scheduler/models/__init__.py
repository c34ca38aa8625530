# booking_scheduler/models/__init__.py
from .base import Base
from .recurring_rule import RecurringRule
from .appointment import Appointment
from .recurring_exception import RecurringException
from .time_slot import TimeSlot
from .blocked_time_slot import BlockedTimeSlot

__all__ = [
    "Base",
    "RecurringRule",
    "Appointment",
    "RecurringException",
    "TimeSlot",
    "BlockedTimeSlot",
]
