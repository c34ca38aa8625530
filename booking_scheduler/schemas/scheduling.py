# booking_scheduler/schemas/scheduling.py
"""
Canonical scheduling types.

Every recurrence cadence, appointment status and exception action used anywhere
in the package is parsed and labelled here. Other modules must go through
``parse_recurrence`` instead of comparing raw strings.
"""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RecurrenceType(str, Enum):
    NONE = "none"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    TRIWEEKLY = "triweekly"
    MONTHLY = "monthly"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"


class ExceptionAction(str, Enum):
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    SKIP = "skip"


class InstanceStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class SlotType(str, Enum):
    NORMAL = "normal"
    MANUALLY_BLOCKED = "manually_blocked"


class SourceType(str, Enum):
    APPOINTMENT = "appointment"
    VIRTUAL_INSTANCE = "virtual_instance"


class ConflictType(str, Enum):
    APPOINTMENT = "appointment"
    MANUAL_BLOCK = "manual_block"
    RECURRING = "recurring"


# Statuses that no longer occupy provider time
INACTIVE_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.REJECTED})

# Statuses that do occupy provider time
ACTIVE_STATUSES = frozenset(set(AppointmentStatus) - INACTIVE_STATUSES)

# Cadence -> step in days (monthly is calendar based)
WEEKLY_STEP_DAYS = {
    RecurrenceType.WEEKLY: 7,
    RecurrenceType.BIWEEKLY: 14,
    RecurrenceType.TRIWEEKLY: 21,
}

_RECURRENCE_ALIASES = {
    "none": RecurrenceType.NONE,
    "no": RecurrenceType.NONE,
    "once": RecurrenceType.NONE,
    "single": RecurrenceType.NONE,
    "una vez": RecurrenceType.NONE,
    "ninguno": RecurrenceType.NONE,
    "weekly": RecurrenceType.WEEKLY,
    "week": RecurrenceType.WEEKLY,
    "semanal": RecurrenceType.WEEKLY,
    "biweekly": RecurrenceType.BIWEEKLY,
    "bi-weekly": RecurrenceType.BIWEEKLY,
    "quincenal": RecurrenceType.BIWEEKLY,
    "cada dos semanas": RecurrenceType.BIWEEKLY,
    "triweekly": RecurrenceType.TRIWEEKLY,
    "tri-weekly": RecurrenceType.TRIWEEKLY,
    "trisemanal": RecurrenceType.TRIWEEKLY,
    "cada tres semanas": RecurrenceType.TRIWEEKLY,
    "monthly": RecurrenceType.MONTHLY,
    "month": RecurrenceType.MONTHLY,
    "mensual": RecurrenceType.MONTHLY,
}

_RECURRENCE_LABELS = {
    RecurrenceType.NONE: "One time",
    RecurrenceType.WEEKLY: "Weekly",
    RecurrenceType.BIWEEKLY: "Every 2 weeks",
    RecurrenceType.TRIWEEKLY: "Every 3 weeks",
    RecurrenceType.MONTHLY: "Monthly",
}

_STATUS_LABELS = {
    AppointmentStatus.PENDING: "Pending",
    AppointmentStatus.CONFIRMED: "Confirmed",
    AppointmentStatus.COMPLETED: "Completed",
    AppointmentStatus.CANCELLED: "Cancelled",
    AppointmentStatus.REJECTED: "Rejected",
    AppointmentStatus.SCHEDULED: "Scheduled",
}


def parse_recurrence(value: Any) -> Optional[RecurrenceType]:
    """
    Parse any stored or user supplied cadence into a RecurrenceType.

    Empty values mean NONE. Unknown strings return None so the caller can
    decide whether that is an error or a warning.
    """
    if isinstance(value, RecurrenceType):
        return value
    if value is None:
        return RecurrenceType.NONE
    normalized = " ".join(str(value).lower().split())
    if not normalized:
        return RecurrenceType.NONE
    return _RECURRENCE_ALIASES.get(normalized)


def is_recurring(value: Any) -> bool:
    parsed = parse_recurrence(value)
    return parsed is not None and parsed is not RecurrenceType.NONE


def recurrence_label(value: Any) -> str:
    parsed = parse_recurrence(value)
    if parsed is None:
        return "Unknown"
    return _RECURRENCE_LABELS[parsed]


def status_label(value: Any) -> str:
    try:
        return _STATUS_LABELS[AppointmentStatus(value)]
    except ValueError:
        return "Unknown"


def is_active_status(value: Any) -> bool:
    try:
        return AppointmentStatus(value) in ACTIVE_STATUSES
    except ValueError:
        return False


class Occurrence(BaseModel):
    """A candidate occurrence produced by the recurrence expander"""
    occurrence_date: date
    start: datetime
    end: datetime


class ResolvedOccurrence(BaseModel):
    """An occurrence after exceptions have been applied"""
    occurrence_date: date
    status: InstanceStatus
    effective_start: Optional[datetime] = None
    effective_end: Optional[datetime] = None
    original_start: datetime
    original_end: datetime
    exception_id: Optional[UUID] = None
    exception_notes: Optional[str] = None


class AppointmentInstance(BaseModel):
    """A concrete calendar entry, either persisted or computed from a series"""
    id: str
    provider_id: UUID
    client_id: Optional[UUID] = None
    listing_id: Optional[UUID] = None
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    recurrence: RecurrenceType = RecurrenceType.NONE
    is_recurring_instance: bool = False
    source_type: SourceType = SourceType.APPOINTMENT
    recurring_rule_id: Optional[UUID] = None
    original_appointment_id: Optional[UUID] = None
    recurrence_group_id: Optional[UUID] = None
    external_booking: bool = False
    client_name: Optional[str] = None
    provider_name: Optional[str] = None
    notes: Optional[str] = None
    complete_location: str = ""
    is_rescheduled: bool = False
    reschedule_notes: Optional[str] = None

    @property
    def is_virtual(self) -> bool:
        return self.source_type is SourceType.VIRTUAL_INSTANCE


class ConflictResult(BaseModel):
    """Outcome of an overlap check; conflicts are data, not exceptions"""
    conflict: bool = False
    reason: Optional[str] = None
    conflict_type: Optional[ConflictType] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def clear(cls) -> "ConflictResult":
        return cls(conflict=False)
