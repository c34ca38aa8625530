# ============================================================================
# booking_scheduler/services/appointment/instance_merger.py
# ============================================================================
"""Merges persisted appointments with virtual recurring instances"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from booking_scheduler.models.appointment import Appointment
from booking_scheduler.schemas.scheduling import (
    AppointmentInstance,
    AppointmentStatus,
    InstanceStatus,
    RecurrenceType,
    ResolvedOccurrence,
    SourceType,
    is_recurring,
    parse_recurrence,
)
from booking_scheduler.services.recurrence.recurrence_expander import SeriesDefinition
from booking_scheduler.utils.datetime_utils import to_utc, utc_now

logger = logging.getLogger(__name__)

LOCATION_PLACEHOLDER = "Location not specified"
LOCATION_SEPARATOR = " – "

_NUMBER_PREFIX = re.compile(r"^\s*(casa|#)\s*", re.IGNORECASE)


@dataclass(frozen=True)
class InstanceKey:
    """Identity of a calendar entry: provider plus UTC-normalized time range"""
    provider_id: UUID
    start_time: datetime
    end_time: datetime

    @classmethod
    def of(cls, provider_id: Any, start_time: datetime, end_time: datetime) -> "InstanceKey":
        if not isinstance(provider_id, UUID):
            provider_id = UUID(str(provider_id))
        return cls(
            provider_id=provider_id,
            start_time=to_utc(start_time).replace(microsecond=0),
            end_time=to_utc(end_time).replace(microsecond=0),
        )

    @classmethod
    def for_instance(cls, instance: AppointmentInstance) -> "InstanceKey":
        return cls.of(instance.provider_id, instance.start_time, instance.end_time)


def _field(source: Any, name: str) -> Optional[str]:
    if source is None:
        return None
    if isinstance(source, dict):
        value = source.get(name)
    else:
        value = getattr(source, name, None)
    if isinstance(value, str):
        value = value.strip()
    return value or None


def build_location(source: Any) -> str:
    """
    Human readable location for an appointment, a rule or a plain dict.

    External bookings carry a free-form address. Marketplace bookings are
    assembled from residence, condominium and unit number.
    """
    if source is None:
        return LOCATION_PLACEHOLDER

    address = _field(source, "client_address")
    if _field(source, "external_booking"):
        return address or LOCATION_PLACEHOLDER

    parts = []
    residence = _field(source, "residence_name")
    if residence:
        parts.append(residence)

    condominium = _field(source, "condominium_text") or _field(source, "condominium_name")
    if condominium:
        parts.append(condominium)

    number = _field(source, "apartment") or _field(source, "house_number")
    if number:
        number = _NUMBER_PREFIX.sub("", str(number)).strip()
        if number:
            parts.append(f"#{number}")

    if parts:
        return LOCATION_SEPARATOR.join(parts)
    return address or LOCATION_PLACEHOLDER


def virtual_instance_id(series_id: Any, start_time: datetime) -> str:
    return f"virtual-{series_id}-{to_utc(start_time).isoformat()}"


class InstanceMerger:
    """Builds AppointmentInstance records and removes duplicates"""

    @staticmethod
    def from_appointment(appointment: Appointment) -> AppointmentInstance:
        recurrence = parse_recurrence(appointment.recurrence) or RecurrenceType.NONE
        try:
            status = AppointmentStatus(appointment.status)
        except ValueError:
            logger.warning(f"Appointment {appointment.id} has unknown status {appointment.status!r}")
            status = AppointmentStatus.PENDING

        return AppointmentInstance(
            id=str(appointment.id),
            provider_id=appointment.provider_id,
            client_id=appointment.client_id,
            listing_id=appointment.listing_id,
            start_time=to_utc(appointment.start_time),
            end_time=to_utc(appointment.end_time),
            status=status,
            recurrence=recurrence,
            is_recurring_instance=bool(appointment.is_recurring_instance),
            source_type=SourceType.APPOINTMENT,
            recurring_rule_id=appointment.recurring_rule_id,
            recurrence_group_id=appointment.recurrence_group_id,
            external_booking=bool(appointment.external_booking),
            client_name=appointment.client_name,
            provider_name=appointment.provider_name,
            notes=appointment.notes,
            complete_location=build_location(appointment),
        )

    @staticmethod
    def from_resolved(
            series: SeriesDefinition,
            resolved: ResolvedOccurrence,
            now: Optional[datetime] = None
    ) -> Optional[AppointmentInstance]:
        """Virtual instance for one resolved occurrence; cancelled ones produce nothing."""
        if resolved.status is InstanceStatus.CANCELLED:
            return None

        now = now or utc_now()
        start = to_utc(resolved.effective_start)
        end = to_utc(resolved.effective_end)
        source = series.source

        if end <= now:
            status = AppointmentStatus.COMPLETED
        elif series.from_rule:
            status = AppointmentStatus.SCHEDULED
        elif getattr(source, "status", None) == AppointmentStatus.PENDING.value:
            status = AppointmentStatus.PENDING
        else:
            status = AppointmentStatus.CONFIRMED

        return AppointmentInstance(
            id=virtual_instance_id(series.id, start),
            provider_id=series.provider_id,
            client_id=series.client_id,
            listing_id=series.listing_id,
            start_time=start,
            end_time=end,
            status=status,
            recurrence=parse_recurrence(series.recurrence_type) or RecurrenceType.NONE,
            is_recurring_instance=True,
            source_type=SourceType.VIRTUAL_INSTANCE,
            recurring_rule_id=series.id if series.from_rule else None,
            original_appointment_id=None if series.from_rule else series.id,
            recurrence_group_id=getattr(source, "recurrence_group_id", None),
            external_booking=bool(getattr(source, "external_booking", False)),
            client_name=getattr(source, "client_name", None),
            provider_name=getattr(source, "provider_name", None),
            notes=resolved.exception_notes or getattr(source, "notes", None),
            complete_location=build_location(source),
            is_rescheduled=resolved.status is InstanceStatus.RESCHEDULED,
            reschedule_notes=resolved.exception_notes if resolved.status is InstanceStatus.RESCHEDULED else None,
        )

    @staticmethod
    def merge(
            persisted: Iterable[Any],
            virtual: Iterable[AppointmentInstance]
    ) -> List[AppointmentInstance]:
        """
        Union of persisted and virtual instances with no two entries sharing
        (provider, start, end). Persisted rows always win; among virtual
        instances the first one seen is kept.
        """
        merged: Dict[InstanceKey, AppointmentInstance] = {}

        for item in persisted:
            instance = item if isinstance(item, AppointmentInstance) else InstanceMerger.from_appointment(item)
            key = InstanceKey.for_instance(instance)
            if key in merged:
                logger.warning(f"Two persisted appointments share slot {key}: {merged[key].id}, {instance.id}")
                continue
            merged[key] = instance

        skipped = 0
        for instance in virtual:
            key = InstanceKey.for_instance(instance)
            if key in merged:
                skipped += 1
                continue
            merged[key] = instance

        if skipped:
            logger.debug(f"Dropped {skipped} virtual instances already covered")

        return sorted(merged.values(), key=lambda instance: (instance.start_time, instance.id))

    @staticmethod
    def is_recurring_base(appointment: Appointment) -> bool:
        """A persisted appointment that defines a series instead of being an occurrence of one."""
        return is_recurring(appointment.recurrence) and not appointment.is_recurring_instance
