import uuid

from sqlalchemy import Uuid
from sqlalchemy.schema import CreateTable

from booking_scheduler.models import Appointment, Base, TimeSlot

from tests.conftest import CLIENT_ID, LISTING_ID, PROVIDER_ID, utc


def test_id_columns_use_the_portable_uuid_type():
    for table in Base.metadata.sorted_tables:
        for column in table.columns:
            if column.name == "id" or column.name.endswith("_id"):
                assert isinstance(column.type, Uuid), f"{table.name}.{column.name}"


def test_digit_only_ids_survive_a_round_trip(db, engine):
    ddl = str(CreateTable(Appointment.__table__).compile(dialect=engine.dialect))
    assert "provider_id CHAR(32)" in ddl

    appointment_id = uuid.UUID("12345678-1234-1234-1234-123456789012")
    db.add(Appointment(
        id=appointment_id, provider_id=PROVIDER_ID, client_id=CLIENT_ID, listing_id=LISTING_ID,
        start_time=utc(2024, 1, 1, 9, 0), end_time=utc(2024, 1, 1, 10, 0),
    ))
    db.commit()
    db.expire_all()

    stored = db.get(Appointment, appointment_id)
    assert isinstance(stored.provider_id, uuid.UUID)
    assert stored.provider_id == PROVIDER_ID
    assert stored.client_id == CLIENT_ID


def test_slot_lookup_by_provider_matches(db, make_slot):
    slot = make_slot(utc(2024, 5, 6, 9, 0))
    db.expire_all()

    found = db.query(TimeSlot).filter(TimeSlot.provider_id == PROVIDER_ID).all()
    assert [item.id for item in found] == [slot.id]
    assert found[0].listing_id == LISTING_ID
