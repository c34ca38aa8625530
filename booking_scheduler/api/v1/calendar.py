# ============================================================================
# FILE: booking_scheduler/api/v1/calendar.py
# ============================================================================
from datetime import datetime, timedelta
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from booking_scheduler.config.database import get_db
from booking_scheduler.config.settings import get_settings
from booking_scheduler.schemas.scheduling import AppointmentInstance
from booking_scheduler.services.appointment.appointment_service import AppointmentService
from booking_scheduler.utils.datetime_utils import ensure_aware, utc_now

router = APIRouter(tags=["calendar"])


@router.get("", response_model=List[AppointmentInstance])
def get_calendar(
        user_id: UUID,
        role: Literal["provider", "client"] = "provider",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        include_completed: bool = Query(default=True),
        db: Session = Depends(get_db)
):
    """
    Persisted and recurring appointments for a provider or client.
    Defaults to now .. now + DEFAULT_LOOKAHEAD_WEEKS.
    """
    start = ensure_aware(start) if start else utc_now()
    end = ensure_aware(end) if end else start + timedelta(weeks=get_settings().DEFAULT_LOOKAHEAD_WEEKS)
    if end <= start:
        raise HTTPException(status_code=422, detail="end must be after start")

    return AppointmentService.get_calendar(db, user_id, role, start, end, include_completed=include_completed)
