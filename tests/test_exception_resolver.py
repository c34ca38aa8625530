import uuid
from datetime import date, datetime, time, timedelta, timezone

from booking_scheduler.models import Appointment, RecurringException, RecurringRule
from booking_scheduler.schemas.scheduling import InstanceStatus
from booking_scheduler.services.recurrence.exception_resolver import ExceptionResolver
from booking_scheduler.services.recurrence.recurrence_expander import RecurrenceExpander, SeriesDefinition

from tests.conftest import CLIENT_ID, LISTING_ID, PROVIDER_ID, utc

SERIES_ID = uuid.UUID("44444444-4444-4444-4444-444444444444")


def weekly_series() -> SeriesDefinition:
    return SeriesDefinition.from_rule(RecurringRule(
        id=SERIES_ID,
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


def exception(action: str, exception_date: date, **fields) -> RecurringException:
    return RecurringException(
        id=fields.pop("id", uuid.uuid4()),
        appointment_id=fields.pop("appointment_id", SERIES_ID),
        exception_date=exception_date,
        original_date=fields.pop("original_date", exception_date),
        action_type=action,
        **fields,
    )


def resolve(exceptions):
    occurrences = RecurrenceExpander.expand(weekly_series(), date(2024, 1, 1), date(2024, 1, 22))
    return ExceptionResolver.resolve(SERIES_ID, occurrences, exceptions)


def test_no_exceptions_keeps_every_occurrence_scheduled():
    resolved = resolve([])
    assert len(resolved) == 4
    assert all(item.status is InstanceStatus.SCHEDULED for item in resolved)
    assert all(item.effective_start == item.original_start for item in resolved)


def test_cancelled_exception_removes_exactly_that_date():
    resolved = resolve([exception("cancelled", date(2024, 1, 8))])
    active = ExceptionResolver.active(resolved)

    assert [item.occurrence_date for item in active] == [date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 22)]
    cancelled = [item for item in resolved if item.status is InstanceStatus.CANCELLED]
    assert [item.occurrence_date for item in cancelled] == [date(2024, 1, 8)]
    assert cancelled[0].effective_start is None


def test_skip_behaves_like_cancel():
    active = ExceptionResolver.active(resolve([exception("skip", date(2024, 1, 15))]))
    assert date(2024, 1, 15) not in [item.occurrence_date for item in active]


def test_rescheduled_exception_moves_the_occurrence():
    new_start = utc(2024, 1, 10, 14, 0)
    resolved = resolve([exception(
        "rescheduled", date(2024, 1, 8),
        new_start_time=new_start, new_end_time=new_start + timedelta(hours=1), notes="client request",
    )])

    moved = [item for item in resolved if item.occurrence_date == date(2024, 1, 8)][0]
    assert moved.status is InstanceStatus.RESCHEDULED
    assert moved.effective_start == new_start
    assert moved.original_start == utc(2024, 1, 8, 9, 0)
    assert moved.exception_notes == "client request"
    starts = [item.effective_start for item in ExceptionResolver.active(resolved)]
    assert utc(2024, 1, 8, 9, 0) not in starts


def test_exception_found_through_original_date():
    new_start = utc(2024, 1, 16, 9, 0)
    resolved = resolve([exception(
        "rescheduled", date(2024, 1, 16), original_date=date(2024, 1, 15),
        new_start_time=new_start, new_end_time=new_start + timedelta(hours=1),
    )])
    moved = [item for item in resolved if item.occurrence_date == date(2024, 1, 15)][0]
    assert moved.status is InstanceStatus.RESCHEDULED
    assert moved.effective_start == new_start


def test_reschedule_without_new_times_keeps_original_slot():
    resolved = resolve([exception("rescheduled", date(2024, 1, 8))])
    item = [entry for entry in resolved if entry.occurrence_date == date(2024, 1, 8)][0]
    assert item.status is InstanceStatus.SCHEDULED
    assert item.effective_start == utc(2024, 1, 8, 9, 0)


def test_exceptions_of_other_series_are_ignored():
    resolved = resolve([exception("cancelled", date(2024, 1, 8), appointment_id=uuid.uuid4())])
    assert all(item.status is InstanceStatus.SCHEDULED for item in resolved)


def test_most_recent_duplicate_wins():
    older = exception("cancelled", date(2024, 1, 8), created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    newer_start = utc(2024, 1, 8, 11, 0)
    newer = exception(
        "rescheduled", date(2024, 1, 9), original_date=date(2024, 1, 8),
        new_start_time=newer_start, new_end_time=newer_start + timedelta(hours=1),
        created_at=datetime(2024, 1, 5, tzinfo=timezone.utc),
    )
    for ordering in ([older, newer], [newer, older]):
        resolved = resolve(ordering)
        item = [entry for entry in resolved if entry.occurrence_date == date(2024, 1, 8)][0]
        assert item.status is InstanceStatus.RESCHEDULED


def test_unknown_action_is_ignored():
    resolved = resolve([exception("postponed", date(2024, 1, 8))])
    assert all(item.status is InstanceStatus.SCHEDULED for item in resolved)


def test_expand_and_resolve_combines_both_steps():
    resolved = ExceptionResolver.expand_and_resolve(
        weekly_series(), date(2024, 1, 1), date(2024, 1, 22), [exception("cancelled", date(2024, 1, 1))]
    )
    assert len(resolved) == 4
    assert len(ExceptionResolver.active(resolved)) == 3


def test_moved_in_finds_reschedules_from_outside_the_window():
    moved_from_8th = exception(
        "rescheduled", date(2024, 1, 8),
        new_start_time=utc(2024, 1, 16, 14, 0), new_end_time=utc(2024, 1, 16, 15, 0),
    )
    exceptions = [moved_from_8th, exception("cancelled", date(2024, 1, 1))]
    in_window = ExceptionResolver.expand_and_resolve(weekly_series(), date(2024, 1, 15), date(2024, 1, 22), exceptions)

    moved = ExceptionResolver.moved_in(weekly_series(), exceptions, in_window)

    assert len(moved) == 1
    assert moved[0].occurrence_date == date(2024, 1, 8)
    assert moved[0].status is InstanceStatus.RESCHEDULED
    assert moved[0].effective_start == utc(2024, 1, 16, 14, 0)
    assert moved[0].original_start == utc(2024, 1, 8, 9, 0)
    assert moved[0].exception_id == moved_from_8th.id


def test_moved_in_skips_what_the_window_already_resolved():
    exceptions = [exception(
        "rescheduled", date(2024, 1, 15),
        new_start_time=utc(2024, 1, 16, 14, 0), new_end_time=utc(2024, 1, 16, 15, 0),
    )]
    in_window = ExceptionResolver.expand_and_resolve(weekly_series(), date(2024, 1, 15), date(2024, 1, 22), exceptions)

    assert ExceptionResolver.moved_in(weekly_series(), exceptions, in_window) == []


def test_moved_in_ignores_days_the_series_never_produces():
    # 2024-01-09 is a Tuesday
    exceptions = [exception(
        "rescheduled", date(2024, 1, 9),
        new_start_time=utc(2024, 1, 16, 14, 0), new_end_time=utc(2024, 1, 16, 15, 0),
    )]
    assert ExceptionResolver.moved_in(weekly_series(), exceptions) == []


def test_base_row_is_overridden_only_by_an_exception_on_its_own_day():
    base = Appointment(
        id=SERIES_ID, provider_id=PROVIDER_ID, start_time=utc(2024, 1, 1, 9, 0), end_time=utc(2024, 1, 1, 10, 0),
        recurrence="weekly", is_recurring_instance=False, status="confirmed",
    )
    one_off = Appointment(
        id=uuid.uuid4(), provider_id=PROVIDER_ID, start_time=utc(2024, 1, 1, 9, 0), end_time=utc(2024, 1, 1, 10, 0),
        recurrence="none", is_recurring_instance=False, status="confirmed",
    )

    assert not ExceptionResolver.overrides_base_row(base, [exception("cancelled", date(2024, 1, 8))])
    assert ExceptionResolver.overrides_base_row(base, [exception("cancelled", date(2024, 1, 1))])
    assert not ExceptionResolver.overrides_base_row(
        one_off, [exception("cancelled", date(2024, 1, 1), appointment_id=one_off.id)])
