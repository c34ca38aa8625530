# booking_scheduler/models/recurring_exception.py
from sqlalchemy import Column, String, Date, DateTime, Text, UniqueConstraint, Uuid
from sqlalchemy.sql import func
from booking_scheduler.models.base import Base
import uuid


class RecurringException(Base):
    """Per-date override (cancel / reschedule / skip) of one occurrence in a series"""
    __tablename__ = "recurring_exceptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Id of the recurring base appointment or recurring rule being overridden
    appointment_id = Column(Uuid, nullable=False, index=True)

    exception_date = Column(Date, nullable=False)
    original_date = Column(Date, nullable=True)
    action_type = Column(String(20), nullable=False)  # cancelled, rescheduled, skip

    # Only for rescheduled
    new_start_time = Column(DateTime(timezone=True), nullable=True)
    new_end_time = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("appointment_id", "exception_date", name="uq_recurring_exception_date"),
    )
