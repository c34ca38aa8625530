from .scheduling import (
    AppointmentInstance,
    AppointmentStatus,
    ConflictResult,
    ConflictType,
    ExceptionAction,
    InstanceStatus,
    Occurrence,
    RecurrenceType,
    ResolvedOccurrence,
    SlotType,
    SourceType,
    parse_recurrence,
)

__all__ = [
    "AppointmentInstance",
    "AppointmentStatus",
    "ConflictResult",
    "ConflictType",
    "ExceptionAction",
    "InstanceStatus",
    "Occurrence",
    "RecurrenceType",
    "ResolvedOccurrence",
    "SlotType",
    "SourceType",
    "parse_recurrence",
]
