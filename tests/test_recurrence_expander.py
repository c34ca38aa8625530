from datetime import date, datetime, time, timedelta, timezone

import pytest

from booking_scheduler.config.settings import get_settings
from booking_scheduler.models import Appointment, RecurringRule
from booking_scheduler.services.recurrence.recurrence_expander import RecurrenceExpander, SeriesDefinition
from booking_scheduler.utils.datetime_utils import js_weekday

from tests.conftest import CLIENT_ID, LISTING_ID, PROVIDER_ID, utc


def rule(**overrides) -> RecurringRule:
    fields = dict(
        client_id=CLIENT_ID,
        provider_id=PROVIDER_ID,
        listing_id=LISTING_ID,
        recurrence_type="weekly",
        start_date=date(2024, 1, 1),
        start_time=time(9, 0),
        end_time=time(10, 0),
        day_of_week=1,
        is_active=True,
    )
    fields.update(overrides)
    return RecurringRule(**fields)


def test_weekly_rule_over_three_weeks_gives_four_occurrences():
    occurrences = RecurrenceExpander.expand(rule(), date(2024, 1, 1), date(2024, 1, 22))

    assert [item.occurrence_date for item in occurrences] == [
        date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22),
    ]
    for item in occurrences:
        assert item.start == utc(item.occurrence_date.year, 1, item.occurrence_date.day, 9, 0)
        assert item.end - item.start == timedelta(hours=1)


@pytest.mark.parametrize("weeks", [1, 4, 9])
def test_weekly_occurrences_are_seven_days_apart_on_the_rule_weekday(weeks):
    window_end = date(2024, 1, 1) + timedelta(weeks=weeks)
    occurrences = RecurrenceExpander.expand(rule(day_of_week=3), date(2024, 1, 1), window_end)

    assert abs(len(occurrences) - weeks) <= 1
    assert all(js_weekday(item.occurrence_date) == 3 for item in occurrences)
    gaps = {(b.occurrence_date - a.occurrence_date).days for a, b in zip(occurrences, occurrences[1:])}
    assert gaps <= {7}


def test_start_moves_forward_to_the_requested_weekday():
    # 2024-01-01 is a Monday; Friday is 5 with Sunday = 0
    occurrences = RecurrenceExpander.expand(rule(day_of_week=5), date(2024, 1, 1), date(2024, 1, 10))
    assert [item.occurrence_date for item in occurrences] == [date(2024, 1, 5)]


def test_missing_day_of_week_uses_start_date_weekday():
    occurrences = RecurrenceExpander.expand(rule(day_of_week=None), date(2024, 1, 1), date(2024, 1, 14))
    assert [item.occurrence_date for item in occurrences] == [date(2024, 1, 1), date(2024, 1, 8)]


def test_biweekly_parity_does_not_depend_on_window_start():
    series = rule(recurrence_type="biweekly")
    from_start = RecurrenceExpander.expand(series, date(2024, 1, 1), date(2024, 2, 29))
    from_later = RecurrenceExpander.expand(series, date(2024, 1, 9), date(2024, 2, 29))

    assert [item.occurrence_date for item in from_start] == [
        date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 29), date(2024, 2, 12), date(2024, 2, 26),
    ]
    assert [item.occurrence_date for item in from_later] == [item.occurrence_date for item in from_start[1:]]


def test_triweekly_steps_twenty_one_days():
    occurrences = RecurrenceExpander.expand(rule(recurrence_type="tri-weekly"), date(2024, 1, 1), date(2024, 2, 15))
    assert [item.occurrence_date for item in occurrences] == [date(2024, 1, 1), date(2024, 1, 22), date(2024, 2, 12)]


def test_monthly_clamps_to_short_months():
    series = rule(recurrence_type="monthly", start_date=date(2024, 1, 31), day_of_month=31, day_of_week=None)
    occurrences = RecurrenceExpander.expand(series, date(2024, 1, 1), date(2024, 4, 30))
    assert [item.occurrence_date for item in occurrences] == [
        date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30),
    ]


def test_monthly_skips_dates_before_the_rule_start():
    series = rule(recurrence_type="mensual", start_date=date(2024, 1, 20), day_of_month=10)
    occurrences = RecurrenceExpander.expand(series, date(2024, 1, 1), date(2024, 3, 31))
    assert [item.occurrence_date for item in occurrences] == [date(2024, 2, 10), date(2024, 3, 10)]


def test_window_before_rule_start_is_empty():
    assert RecurrenceExpander.expand(rule(start_date=date(2024, 6, 1)), date(2024, 1, 1), date(2024, 1, 31)) == []


def test_results_stay_inside_the_window():
    occurrences = RecurrenceExpander.expand(rule(), date(2024, 1, 3), date(2024, 1, 20))
    assert all(date(2024, 1, 3) <= item.occurrence_date <= date(2024, 1, 20) for item in occurrences)
    assert [item.occurrence_date for item in occurrences] == [date(2024, 1, 8), date(2024, 1, 15)]


@pytest.mark.parametrize("overrides", [
    {"is_active": False},
    {"recurrence_type": "fortnightly-ish"},
    {"recurrence_type": "none"},
])
def test_unusable_rules_expand_to_nothing(overrides):
    assert RecurrenceExpander.expand(rule(**overrides), date(2024, 1, 1), date(2024, 3, 1)) == []


def test_inverted_window_is_empty_and_does_not_raise():
    assert RecurrenceExpander.expand(rule(), date(2024, 2, 1), date(2024, 1, 1)) == []


def test_cap_limits_occurrences():
    occurrences = RecurrenceExpander.expand(rule(), date(2024, 1, 1), date(2026, 1, 1), max_instances=5)
    assert len(occurrences) == 5

    default_cap = get_settings().MAX_INSTANCES_PER_RULE
    assert len(RecurrenceExpander.expand(rule(), date(2024, 1, 1), date(2030, 1, 1))) == default_cap


def test_end_before_start_rolls_to_next_day():
    occurrences = RecurrenceExpander.expand(
        rule(start_time=time(22, 0), end_time=time(1, 0)), date(2024, 1, 1), date(2024, 1, 1)
    )
    assert occurrences[0].end == utc(2024, 1, 2, 1, 0)


def test_datetime_window_filters_by_start_timestamp():
    occurrences = RecurrenceExpander.expand(rule(), utc(2024, 1, 1, 9, 30), utc(2024, 1, 15, 9, 0))
    assert [item.occurrence_date for item in occurrences] == [date(2024, 1, 8), date(2024, 1, 15)]


def test_recurring_base_appointment_defines_a_series():
    base = Appointment(
        provider_id=PROVIDER_ID,
        client_id=CLIENT_ID,
        start_time=utc(2024, 1, 2, 14, 0),
        end_time=utc(2024, 1, 2, 15, 30),
        status="confirmed",
        recurrence="biweekly",
    )
    series = RecurrenceExpander.rule_from_base_appointment(base)
    assert series.day_of_week == 2
    assert series.from_rule is False

    occurrences = RecurrenceExpander.expand(base, date(2024, 1, 1), date(2024, 1, 31))
    assert [item.occurrence_date for item in occurrences] == [date(2024, 1, 2), date(2024, 1, 16), date(2024, 1, 30)]
    assert occurrences[0].end - occurrences[0].start == timedelta(minutes=90)


def test_cancelled_base_appointment_does_not_expand():
    base = Appointment(
        provider_id=PROVIDER_ID,
        start_time=utc(2024, 1, 2, 14, 0),
        end_time=utc(2024, 1, 2, 15, 0),
        status="cancelled",
        recurrence="weekly",
    )
    assert RecurrenceExpander.expand(base, date(2024, 1, 1), date(2024, 1, 31)) == []


def test_times_are_read_in_the_configured_timezone(monkeypatch):
    monkeypatch.setenv("DEFAULT_TIMEZONE", "America/Costa_Rica")
    get_settings.cache_clear()
    try:
        occurrences = RecurrenceExpander.expand(rule(), date(2024, 1, 1), date(2024, 1, 1))
        # Costa Rica is UTC-6 all year
        assert occurrences[0].start.astimezone(timezone.utc) == utc(2024, 1, 1, 15, 0)
    finally:
        monkeypatch.undo()
        get_settings.cache_clear()


def test_coerce_rejects_unknown_objects():
    with pytest.raises(TypeError):
        SeriesDefinition.coerce(object())
