import os

# Must be set before booking_scheduler is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AVAILABILITY_CACHE_BACKEND", "memory")
os.environ.setdefault("DEFAULT_TIMEZONE", "UTC")
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")
os.environ.setdefault("RETRY_MAX_DELAY_SECONDS", "0")

import uuid
from datetime import date, datetime, time, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booking_scheduler.config.database import get_db
from booking_scheduler.models import Appointment, Base, BlockedTimeSlot, RecurringException, RecurringRule, TimeSlot

PROVIDER_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
CLIENT_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
LISTING_ID = uuid.UUID("33333333-3333-3333-3333-333333333333")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db):
    from booking_scheduler.main import create_app

    app = create_app()

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def make_rule(db):
    def _make(**overrides) -> RecurringRule:
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
        rule = RecurringRule(**fields)
        db.add(rule)
        db.commit()
        return rule
    return _make


@pytest.fixture()
def make_appointment(db):
    def _make(start: datetime, minutes: int = 60, **overrides) -> Appointment:
        fields = dict(
            provider_id=PROVIDER_ID,
            client_id=CLIENT_ID,
            listing_id=LISTING_ID,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            status="confirmed",
            recurrence="none",
        )
        fields.update(overrides)
        appointment = Appointment(**fields)
        db.add(appointment)
        db.commit()
        return appointment
    return _make


@pytest.fixture()
def make_exception(db):
    def _make(series_id, exception_date: date, action_type: str = "cancelled", **overrides) -> RecurringException:
        exception = RecurringException(
            appointment_id=series_id,
            exception_date=exception_date,
            original_date=overrides.pop("original_date", exception_date),
            action_type=action_type,
            **overrides,
        )
        db.add(exception)
        db.commit()
        return exception
    return _make


@pytest.fixture()
def make_slot(db):
    def _make(start: datetime, minutes: int = 30, **overrides) -> TimeSlot:
        fields = dict(
            provider_id=PROVIDER_ID,
            listing_id=LISTING_ID,
            slot_date=start.date(),
            slot_datetime_start=start,
            slot_datetime_end=start + timedelta(minutes=minutes),
            is_available=True,
            is_reserved=False,
        )
        fields.update(overrides)
        slot = TimeSlot(**fields)
        db.add(slot)
        db.commit()
        return slot
    return _make


@pytest.fixture()
def make_block(db):
    def _make(day: int, start_hour: int, end_hour: int, note=None) -> BlockedTimeSlot:
        block = BlockedTimeSlot(provider_id=PROVIDER_ID, day=day, start_hour=start_hour, end_hour=end_hour, note=note)
        db.add(block)
        db.commit()
        return block
    return _make
