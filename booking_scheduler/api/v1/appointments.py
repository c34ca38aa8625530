# ============================================================================
# FILE: booking_scheduler/api/v1/appointments.py
# ============================================================================
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from booking_scheduler.api.dependencies import get_retry_policy
from booking_scheduler.config.database import get_db
from booking_scheduler.core.retry import RetryPolicy
from booking_scheduler.schemas.api import AppointmentResponse, BookingRequest, StatusUpdateRequest
from booking_scheduler.services.appointment.appointment_service import AppointmentService

router = APIRouter(tags=["appointments"])


@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
        request: BookingRequest,
        db: Session = Depends(get_db),
        retry_policy: RetryPolicy = Depends(get_retry_policy)
):
    details = request.model_dump(exclude={"provider_id", "start_time", "end_time", "client_id",
                                          "listing_id", "recurrence"}, exclude_none=True)
    return AppointmentService.create_booking(
        db,
        request.provider_id,
        request.start_time,
        request.end_time,
        client_id=request.client_id,
        listing_id=request.listing_id,
        recurrence=request.recurrence,
        retry_policy=retry_policy,
        **details,
    )


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
def update_status(
        appointment_id: UUID,
        request: StatusUpdateRequest,
        db: Session = Depends(get_db)
):
    return AppointmentService.update_status(db, appointment_id, request.status, reason=request.reason)
