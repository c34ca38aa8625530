# booking_scheduler/models/blocked_time_slot.py
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, Uuid
from sqlalchemy.sql import func
from booking_scheduler.models.base import Base
import uuid


class BlockedTimeSlot(Base):
    """Provider-defined unavailability window, independent of appointments"""
    __tablename__ = "blocked_time_slots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(Uuid, nullable=False, index=True)

    day = Column(Integer, nullable=False)  # 0=Sunday ... 6=Saturday, -1 = every day
    start_hour = Column(Integer, nullable=False)
    end_hour = Column(Integer, nullable=False)
    note = Column(Text, nullable=True)

    is_recurring = Column(Boolean, default=True)
    recurrence_type = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
