import uuid
from datetime import date, datetime, time, timedelta, timezone

import pytest

from booking_scheduler.models import Appointment, RecurringRule
from booking_scheduler.schemas.scheduling import AppointmentStatus, InstanceStatus, SourceType
from booking_scheduler.services.appointment.instance_merger import (
    LOCATION_PLACEHOLDER,
    InstanceKey,
    InstanceMerger,
    build_location,
)
from booking_scheduler.services.recurrence.exception_resolver import ExceptionResolver
from booking_scheduler.services.recurrence.recurrence_expander import SeriesDefinition

from tests.conftest import CLIENT_ID, LISTING_ID, PROVIDER_ID, utc

RULE_ID = uuid.UUID("55555555-5555-5555-5555-555555555555")


def rule_series() -> SeriesDefinition:
    return SeriesDefinition.from_rule(RecurringRule(
        id=RULE_ID,
        client_id=CLIENT_ID,
        provider_id=PROVIDER_ID,
        listing_id=LISTING_ID,
        recurrence_type="weekly",
        start_date=date(2024, 1, 1),
        start_time=time(9, 0),
        end_time=time(10, 0),
        day_of_week=1,
        is_active=True,
    ))


def virtual_instances(series, now):
    resolved = ExceptionResolver.expand_and_resolve(series, date(2024, 1, 1), date(2024, 1, 22), [])
    return [InstanceMerger.from_resolved(series, item, now=now) for item in resolved]


def persisted(start: datetime, **fields) -> Appointment:
    return Appointment(
        id=fields.pop("id", uuid.uuid4()),
        provider_id=PROVIDER_ID,
        client_id=CLIENT_ID,
        start_time=start,
        end_time=start + timedelta(hours=1),
        status=fields.pop("status", "confirmed"),
        recurrence=fields.pop("recurrence", "none"),
        is_recurring_instance=fields.pop("is_recurring_instance", False),
        external_booking=fields.pop("external_booking", False),
        **fields,
    )


def test_instance_key_normalizes_timezones():
    plus_two = timezone(timedelta(hours=2))
    a = InstanceKey.of(PROVIDER_ID, utc(2024, 1, 1, 9), utc(2024, 1, 1, 10))
    b = InstanceKey.of(str(PROVIDER_ID), datetime(2024, 1, 1, 11, tzinfo=plus_two), datetime(2024, 1, 1, 12, tzinfo=plus_two))
    assert a == b
    assert len({a, b}) == 1


def test_persisted_wins_over_virtual_for_the_same_slot():
    now = utc(2023, 12, 1)
    row = persisted(utc(2024, 1, 8, 9, 0), is_recurring_instance=True, recurring_rule_id=RULE_ID)

    merged = InstanceMerger.merge([row], virtual_instances(rule_series(), now))

    assert len(merged) == 4
    at_slot = [item for item in merged if item.start_time == utc(2024, 1, 8, 9, 0)]
    assert len(at_slot) == 1
    assert at_slot[0].source_type is SourceType.APPOINTMENT
    assert at_slot[0].id == str(row.id)


def test_merged_output_never_repeats_a_slot_and_is_sorted():
    now = utc(2023, 12, 1)
    virtual = virtual_instances(rule_series(), now)
    merged = InstanceMerger.merge(
        [persisted(utc(2024, 1, 15, 9, 0)), persisted(utc(2024, 1, 3, 12, 0))],
        virtual + virtual,
    )
    keys = [InstanceKey.for_instance(item) for item in merged]
    assert len(keys) == len(set(keys))
    assert [item.start_time for item in merged] == sorted(item.start_time for item in merged)


def test_virtual_instance_fields():
    now = utc(2023, 12, 1)
    instance = virtual_instances(rule_series(), now)[0]

    assert instance.id == f"virtual-{RULE_ID}-2024-01-01T09:00:00+00:00"
    assert instance.is_virtual
    assert instance.is_recurring_instance
    assert instance.recurring_rule_id == RULE_ID
    assert instance.original_appointment_id is None
    assert instance.status is AppointmentStatus.SCHEDULED


def test_virtual_status_follows_time_and_base_status():
    base = persisted(utc(2024, 1, 1, 9, 0), recurrence="weekly", status="pending")
    series = SeriesDefinition.from_base_appointment(base)

    instances = virtual_instances(series, now=utc(2024, 1, 10))
    statuses = {item.start_time.date(): item.status for item in instances}
    assert statuses[date(2024, 1, 8)] is AppointmentStatus.COMPLETED
    assert statuses[date(2024, 1, 15)] is AppointmentStatus.PENDING
    assert instances[0].original_appointment_id == base.id

    base.status = "confirmed"
    later = virtual_instances(SeriesDefinition.from_base_appointment(base), now=utc(2024, 1, 10))
    assert later[-1].status is AppointmentStatus.CONFIRMED


def test_cancelled_resolved_occurrence_produces_no_instance():
    series = rule_series()
    resolved = ExceptionResolver.expand_and_resolve(series, date(2024, 1, 1), date(2024, 1, 1), [])
    resolved[0].status = InstanceStatus.CANCELLED
    assert InstanceMerger.from_resolved(series, resolved[0]) is None


@pytest.mark.parametrize("source, expected", [
    ({"external_booking": True, "client_address": "Calle 5, San José"}, "Calle 5, San José"),
    ({"external_booking": True}, LOCATION_PLACEHOLDER),
    ({"residence_name": "Lomas", "condominium_name": "Vista", "house_number": "Casa 12"}, "Lomas – Vista – #12"),
    ({"residence_name": "Lomas", "condominium_text": "Torre B", "condominium_name": "Vista",
      "apartment": "#4B", "house_number": "12"}, "Lomas – Torre B – #4B"),
    ({"client_address": "Barrio Escalante"}, "Barrio Escalante"),
    ({}, LOCATION_PLACEHOLDER),
    (None, LOCATION_PLACEHOLDER),
])
def test_build_location(source, expected):
    assert build_location(source) == expected


def test_build_location_reads_model_attributes():
    row = persisted(utc(2024, 1, 1, 9), residence_name="Lomas", house_number="# 7")
    assert build_location(row) == "Lomas – #7"
    assert InstanceMerger.from_appointment(row).complete_location == "Lomas – #7"
