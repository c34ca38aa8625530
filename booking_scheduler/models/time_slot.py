# booking_scheduler/models/time_slot.py
from sqlalchemy import Column, String, Boolean, Date, DateTime, Index, Uuid
from sqlalchemy.sql import func
from booking_scheduler.models.base import Base
import uuid


class TimeSlot(Base):
    """Bookable unit of provider time, locked during checkout via blocked_until"""
    __tablename__ = "provider_time_slots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(Uuid, nullable=False)
    listing_id = Column(Uuid, nullable=False)

    slot_date = Column(Date, nullable=False)
    slot_datetime_start = Column(DateTime(timezone=True), nullable=False)
    slot_datetime_end = Column(DateTime(timezone=True), nullable=False)

    # State flags (is_available and is_reserved are mutually exclusive)
    is_available = Column(Boolean, default=True, nullable=False)
    is_reserved = Column(Boolean, default=False, nullable=False)
    is_manually_disabled = Column(Boolean, default=False, nullable=True)
    recurring_blocked = Column(Boolean, default=False, nullable=True)

    # Checkout lock expiry and the token of the checkout holding it
    blocked_until = Column(DateTime(timezone=True), nullable=True)
    locked_by = Column(String(64), nullable=True)

    slot_type = Column(String(20), default="normal")  # normal, manually_blocked

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_provider_time_slots_lookup", "provider_id", "listing_id", "slot_date"),
    )
