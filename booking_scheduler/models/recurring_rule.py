# booking_scheduler/models/recurring_rule.py
"""
RecurringRule Model - standing booking agreement between a client and a provider.
Read by the recurrence expander on every calendar query, never mutated by it.
"""
from sqlalchemy import Column, String, Integer, Boolean, Date, Time, DateTime, Text, Index, Uuid
from sqlalchemy.sql import func
import uuid
from booking_scheduler.models.base import Base


class RecurringRule(Base):
    __tablename__ = "recurring_rules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Parties
    client_id = Column(Uuid, nullable=False, index=True)
    provider_id = Column(Uuid, nullable=False, index=True)
    listing_id = Column(Uuid, nullable=False)

    # Cadence
    recurrence_type = Column(String(20), nullable=False)  # weekly, biweekly, triweekly, monthly
    start_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    day_of_week = Column(Integer, nullable=True)  # 0=Sunday, 6=Saturday
    day_of_month = Column(Integer, nullable=True)  # monthly only

    # Deactivated instead of deleted when the series is cancelled
    is_active = Column(Boolean, default=True, nullable=False)

    # Denormalized display fields
    client_name = Column(String, nullable=True)
    client_phone = Column(String, nullable=True)
    client_email = Column(String, nullable=True)
    client_address = Column(Text, nullable=True)
    apartment = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_recurring_rules_provider_active", "provider_id", "is_active"),
    )

    def __repr__(self):
        return f"<RecurringRule(id={self.id}, type={self.recurrence_type}, provider_id={self.provider_id})>"
