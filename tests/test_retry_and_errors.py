import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from booking_scheduler.core.errors import (
    MSG_DATA_ERROR,
    MSG_NETWORK,
    MSG_SLOT_TAKEN,
    MSG_TIMEOUT,
    MSG_UNKNOWN,
    PersistenceError,
    SlotConflictError,
    classify_error,
    translate_db_error,
    user_message,
)
from booking_scheduler.core.retry import RetryPolicy
from booking_scheduler.schemas.scheduling import (
    RecurrenceType,
    is_active_status,
    is_recurring,
    parse_recurrence,
    recurrence_label,
    status_label,
)


def unique_violation() -> IntegrityError:
    return IntegrityError(
        "INSERT INTO appointments ...", {},
        Exception('duplicate key value violates unique constraint "unique_active_appointment_slot"'),
    )


def make_policy(**overrides):
    sleeps = []
    options = dict(max_attempts=3, base_delay=1.0, max_delay=5.0, jitter=0.0, sleep=sleeps.append)
    options.update(overrides)
    return RetryPolicy(**options), sleeps


class TestRetryPolicy:
    def test_transient_error_is_retried_until_success(self):
        policy, sleeps = make_policy()
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("connection reset by peer")
            return "booked"

        assert policy.call(flaky) == "booked"
        assert len(attempts) == 3
        assert sleeps == [1.0, 2.0]

    def test_conflict_is_raised_immediately(self):
        policy, sleeps = make_policy()
        attempts = []

        def conflicting():
            attempts.append(1)
            raise SlotConflictError()

        with pytest.raises(SlotConflictError):
            policy.call(conflicting)
        assert len(attempts) == 1
        assert sleeps == []

    def test_last_error_is_raised_when_attempts_run_out(self):
        policy, sleeps = make_policy(max_attempts=2)

        def always_down():
            raise TimeoutError("statement timeout")

        with pytest.raises(TimeoutError):
            policy.call(always_down)
        assert len(sleeps) == 1

    def test_on_retry_is_notified(self):
        policy, _ = make_policy()
        seen = []
        outcomes = iter([PersistenceError("down", retryable=True), None])

        def once_down():
            error = next(outcomes)
            if error:
                raise error
            return 1

        policy.call(once_down, on_retry=lambda attempt, exc: seen.append((attempt, type(exc))))
        assert seen == [(1, PersistenceError)]

    def test_delay_grows_and_is_capped(self):
        policy, _ = make_policy(base_delay=1.0, max_delay=5.0)
        assert [policy.delay_for(attempt) for attempt in (1, 2, 3, 4, 5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_never_exceeds_the_cap(self):
        policy, _ = make_policy(base_delay=4.0, max_delay=5.0, jitter=3.0)
        assert all(policy.delay_for(1) <= 5.0 for _ in range(50))

    def test_at_least_one_attempt_is_required(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_from_settings_reads_configuration(self):
        policy = RetryPolicy.from_settings(sleep=lambda _: None)
        assert policy.max_attempts == 3
        assert policy.base_delay == 0


class TestErrorClassification:
    @pytest.mark.parametrize("error", [
        TimeoutError("read timed out"),
        ConnectionError("refused"),
        OperationalError("SELECT 1", {}, Exception("server closed the connection")),
        Exception("getaddrinfo ENOTFOUND db.internal"),
        PersistenceError("down", retryable=True),
    ])
    def test_retryable(self, error):
        assert classify_error(error) is True

    @pytest.mark.parametrize("error", [
        unique_violation(),
        SlotConflictError(),
        Exception("23505 conflict"),
        ValueError("bad input"),
        PersistenceError("rejected"),
    ])
    def test_not_retryable(self, error):
        assert classify_error(error) is False

    def test_integrity_error_becomes_slot_conflict(self):
        translated = translate_db_error(unique_violation(), "create appointment")
        assert isinstance(translated, SlotConflictError)
        assert translated.message == MSG_SLOT_TAKEN
        assert "unique_active_appointment_slot" in translated.reason

    def test_operational_error_becomes_retryable_persistence_error(self):
        translated = translate_db_error(OperationalError("SELECT 1", {}, Exception("down")), "list appointments")
        assert isinstance(translated, PersistenceError)
        assert translated.retryable

    @pytest.mark.parametrize("error, message", [
        (unique_violation(), MSG_SLOT_TAKEN),
        (Exception("P0001: slot overlaps"), MSG_SLOT_TAKEN),
        (Exception("23503 foreign key"), MSG_DATA_ERROR),
        (TimeoutError("request timed out"), MSG_TIMEOUT),
        (Exception("network unreachable"), MSG_NETWORK),
        (RuntimeError("???"), MSG_UNKNOWN),
        (SlotConflictError("Pick another time"), "Pick another time"),
    ])
    def test_user_message(self, error, message):
        assert user_message(error) == message


class TestRecurrenceParsing:
    @pytest.mark.parametrize("raw, expected", [
        (None, RecurrenceType.NONE),
        ("", RecurrenceType.NONE),
        ("Una  Vez", RecurrenceType.NONE),
        ("Weekly", RecurrenceType.WEEKLY),
        ("semanal", RecurrenceType.WEEKLY),
        ("bi-weekly", RecurrenceType.BIWEEKLY),
        ("quincenal", RecurrenceType.BIWEEKLY),
        ("tri-weekly", RecurrenceType.TRIWEEKLY),
        ("cada tres semanas", RecurrenceType.TRIWEEKLY),
        ("MENSUAL", RecurrenceType.MONTHLY),
        (RecurrenceType.MONTHLY, RecurrenceType.MONTHLY),
    ])
    def test_aliases(self, raw, expected):
        assert parse_recurrence(raw) is expected

    def test_unknown_cadence_is_none(self):
        assert parse_recurrence("every full moon") is None
        assert not is_recurring("every full moon")
        assert recurrence_label("every full moon") == "Unknown"

    def test_labels(self):
        assert recurrence_label("biweekly") == "Every 2 weeks"
        assert recurrence_label(None) == "One time"
        assert status_label("confirmed") == "Confirmed"
        assert status_label("archived") == "Unknown"

    def test_active_statuses(self):
        assert is_active_status("pending")
        assert is_active_status("completed")
        assert not is_active_status("cancelled")
        assert not is_active_status("rejected")
        assert not is_active_status("archived")
