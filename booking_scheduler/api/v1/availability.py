# ============================================================================
# FILE: booking_scheduler/api/v1/availability.py
# ============================================================================
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from booking_scheduler.api.dependencies import get_cache
from booking_scheduler.config.database import get_db
from booking_scheduler.config.settings import get_settings
from booking_scheduler.schemas.api import ConflictCheckRequest, DayAvailabilityResponse
from booking_scheduler.schemas.scheduling import ConflictResult
from booking_scheduler.services.availability.availability_cache import AvailabilityCache
from booking_scheduler.services.availability.availability_service import AvailabilityService
from booking_scheduler.services.availability.conflict_validator import ConflictValidator

router = APIRouter(tags=["availability"])


# Specific routes before parameterized routes
@router.post("/conflicts", response_model=ConflictResult)
def check_conflict(
        request: ConflictCheckRequest,
        db: Session = Depends(get_db)
):
    """Would this time range collide with anything the provider already has?"""
    return ConflictValidator.has_conflict(
        db,
        request.provider_id,
        request.start_time,
        request.end_time,
        exclude_appointment_id=request.exclude_appointment_id,
    )


@router.get("/{provider_id}", response_model=DayAvailabilityResponse)
def get_day_availability(
        provider_id: UUID,
        day: date,
        duration_minutes: Optional[int] = Query(default=None, gt=0, le=24 * 60),
        db: Session = Depends(get_db),
        cache: AvailabilityCache = Depends(get_cache)
):
    duration_minutes = duration_minutes or get_settings().SLOT_SIZE_MINUTES
    slots = AvailabilityService.get_day_availability(db, provider_id, day, duration_minutes, cache=cache)
    return {
        "provider_id": provider_id,
        "date": day,
        "duration_minutes": duration_minutes,
        "slots": slots,
    }
