"""
Error taxonomy for the scheduling core.

Conflicts are expected and are normally returned as ConflictResult / LockResult
values. The exceptions below are raised only when a flow cannot continue.
"""
from __future__ import annotations

from typing import Callable

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

MSG_SLOT_TAKEN = "This time slot was just taken. Please select a different time."
MSG_SLOTS_UNAVAILABLE = "The selected slots are no longer available. Another client reserved them."
MSG_LOCK_EXPIRED = "The time to complete payment has expired. The slots have been released."
MSG_DATA_ERROR = "The booking data is invalid. Please try again."
MSG_TIMEOUT = "The operation took too long. Your booking may have been created."
MSG_NETWORK = "Connection error. Check your connection and try again."
MSG_UNKNOWN = "Unable to process the booking."

# Markers that identify transient failures
RETRYABLE_MARKERS = ("timeout", "timed out", "network", "connection", "temporary", "enotfound", "etimedout")

# Markers that identify conflicts / data errors that must not be retried
NON_RETRYABLE_MARKERS = (
    "23505",  # unique violation
    "23503",  # foreign key violation
    "23514",  # check violation
    "p0001",  # raised by slot-conflict database functions
    "conflict",
    "already exists",
    "unique_active_appointment_slot",
)


class SchedulingError(Exception):
    """Base class for scheduling errors"""

    retryable = False

    def __init__(self, message: str = MSG_UNKNOWN):
        super().__init__(message)
        self.message = message


class InvalidRecurrenceError(SchedulingError):
    """Malformed rule, unknown cadence or inverted date range"""


class NotFoundError(SchedulingError):
    """Requested appointment, rule or exception does not exist"""


class InvalidTransitionError(SchedulingError):
    """Appointment status change not allowed from the current status"""


class SlotConflictError(SchedulingError):
    """The requested time overlaps an existing commitment"""

    def __init__(self, message: str = MSG_SLOT_TAKEN, reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class SlotLockError(SchedulingError):
    """Checkout lock could not be taken because the slots are held elsewhere"""

    def __init__(self, message: str = MSG_SLOTS_UNAVAILABLE):
        super().__init__(message)


class PersistenceError(SchedulingError):
    """The store was unreachable or rejected the write"""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


def translate_db_error(exc: Exception, action: str) -> SchedulingError:
    """
    Map a SQLAlchemy error into the taxonomy.
    Integrity violations become slot conflicts, connectivity errors become
    retryable persistence errors.
    """
    if isinstance(exc, IntegrityError):
        return SlotConflictError(reason=f"{action}: {exc.orig}")
    if isinstance(exc, OperationalError) or (isinstance(exc, DBAPIError) and exc.connection_invalidated):
        return PersistenceError(f"{action} failed: {exc.orig}", retryable=True)
    return PersistenceError(f"{action} failed: {exc}")


def _error_text(exc: BaseException) -> str:
    code = getattr(exc, "code", None) or getattr(getattr(exc, "orig", None), "pgcode", None) or ""
    return f"{code} {exc}".lower()


def classify_error(exc: BaseException) -> bool:
    """Return True when the failed operation is safe to retry."""
    if isinstance(exc, SchedulingError):
        return exc.retryable
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, (OperationalError, TimeoutError, ConnectionError)):
        return True

    text = _error_text(exc)
    if any(marker in text for marker in RETRYABLE_MARKERS):
        return True
    if any(marker in text for marker in NON_RETRYABLE_MARKERS):
        return False
    return False


# (predicate, message). First match wins.
USER_MESSAGE_RULES: list[tuple[Callable[[BaseException, str], bool], str]] = [
    (lambda exc, text: isinstance(exc, SchedulingError) and not isinstance(exc, PersistenceError), ""),
    (lambda exc, text: "23505" in text or "p0001" in text or "unique_active_appointment_slot" in text, MSG_SLOT_TAKEN),
    (lambda exc, text: "23503" in text or "23514" in text, MSG_DATA_ERROR),
    (lambda exc, text: "timeout" in text or "timed out" in text, MSG_TIMEOUT),
    (lambda exc, text: "network" in text or "connection" in text, MSG_NETWORK),
]


def user_message(exc: BaseException) -> str:
    """Translate any failure into a message that can be shown to the user."""
    text = _error_text(exc)
    for predicate, message in USER_MESSAGE_RULES:
        if predicate(exc, text):
            return message or exc.message
    return MSG_UNKNOWN
