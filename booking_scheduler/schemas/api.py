# booking_scheduler/schemas/api.py
"""Request / response bodies for the HTTP layer"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from booking_scheduler.schemas.scheduling import AppointmentStatus, ExceptionAction


class ConflictCheckRequest(BaseModel):
    provider_id: UUID
    start_time: datetime
    end_time: datetime
    exclude_appointment_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilitySlot(BaseModel):
    time: str
    start: datetime
    end: datetime
    available: bool
    reason: Optional[str] = None


class DayAvailabilityResponse(BaseModel):
    provider_id: UUID
    date: date
    duration_minutes: int
    slots: List[AvailabilitySlot]


class SlotIdsRequest(BaseModel):
    slot_ids: List[UUID] = Field(default_factory=list)
    lock_token: Optional[str] = None


class LockResponse(BaseModel):
    acquired: bool
    slot_ids: List[str]
    expires_at: Optional[datetime] = None
    lock_token: Optional[str] = None
    time_remaining: Optional[str] = None  # M:SS
    reason: Optional[str] = None


class ExceptionRequest(BaseModel):
    """Cancel or move one occurrence of a recurring series"""
    occurrence_date: date
    action: ExceptionAction
    new_start_time: Optional[datetime] = None
    new_end_time: Optional[datetime] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_reschedule_times(self):
        if self.action is ExceptionAction.RESCHEDULED:
            if self.new_start_time is None or self.new_end_time is None:
                raise ValueError("new_start_time and new_end_time are required to reschedule")
            if self.new_end_time <= self.new_start_time:
                raise ValueError("new_end_time must be after new_start_time")
        return self


class ExceptionResponse(BaseModel):
    id: UUID
    series_id: UUID
    exception_date: date
    original_date: Optional[date] = None
    action_type: str
    new_start_time: Optional[datetime] = None
    new_end_time: Optional[datetime] = None
    notes: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: AppointmentStatus
    reason: Optional[str] = None


class BookingRequest(BaseModel):
    provider_id: UUID
    start_time: datetime
    end_time: datetime
    client_id: Optional[UUID] = None
    listing_id: Optional[UUID] = None
    recurrence: Optional[str] = None
    external_booking: bool = False
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    notes: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: UUID
    provider_id: UUID
    client_id: Optional[UUID] = None
    start_time: datetime
    end_time: datetime
    status: str
    recurrence: str
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class ErrorResponse(BaseModel):
    detail: str
    reason: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)
