# booking_scheduler/models/appointment.py
from sqlalchemy import Column, String, Boolean, Numeric, Text, DateTime, ForeignKey, Index, text, Uuid
from sqlalchemy.sql import func
from booking_scheduler.models.base import Base
import uuid


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # References
    provider_id = Column(Uuid, nullable=False, index=True)
    client_id = Column(Uuid, nullable=True, index=True)
    listing_id = Column(Uuid, nullable=True)

    # Time range
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)

    # Status tracking
    status = Column(String(20), default="pending", nullable=False)  # pending, confirmed, completed, cancelled, rejected, scheduled

    # Recurrence
    recurrence = Column(String(20), default="none", nullable=False)  # none, weekly, biweekly, triweekly, monthly
    is_recurring_instance = Column(Boolean, default=False, nullable=False)
    recurring_rule_id = Column(Uuid, ForeignKey("recurring_rules.id"), nullable=True)
    recurrence_group_id = Column(Uuid, nullable=True)

    # Booking details
    external_booking = Column(Boolean, default=False, nullable=False)
    final_price = Column(Numeric(10, 2), nullable=True)
    notes = Column(Text, nullable=True)

    # Display / location fields
    client_name = Column(String, nullable=True)
    provider_name = Column(String, nullable=True)
    client_address = Column(Text, nullable=True)
    residence_name = Column(String, nullable=True)
    condominium_name = Column(String, nullable=True)
    condominium_text = Column(String, nullable=True)
    house_number = Column(String, nullable=True)
    apartment = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_appointments_provider_start", "provider_id", "start_time"),
        # One active appointment per provider slot (PostgreSQL partial index)
        Index(
            "unique_active_appointment_slot",
            "provider_id", "start_time",
            unique=True,
            postgresql_where=text("status NOT IN ('cancelled', 'rejected')"),
            sqlite_where=text("status NOT IN ('cancelled', 'rejected')"),
        ),
    )

    def __repr__(self):
        return f"<Appointment(id={self.id}, provider_id={self.provider_id}, start={self.start_time}, status={self.status})>"
