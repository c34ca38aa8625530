# ============================================================================
# FILE: booking_scheduler/api/v1/recurring.py
# Per-occurrence exceptions and series cancellation
# ============================================================================
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from booking_scheduler.config.database import get_db
from booking_scheduler.models import RecurringException
from booking_scheduler.schemas.api import ExceptionRequest, ExceptionResponse
from booking_scheduler.schemas.scheduling import ExceptionAction
from booking_scheduler.services.appointment.appointment_service import AppointmentService

router = APIRouter(tags=["recurring"])


def _to_response(exception: RecurringException) -> ExceptionResponse:
    return ExceptionResponse(
        id=exception.id,
        series_id=exception.appointment_id,
        exception_date=exception.exception_date,
        original_date=exception.original_date,
        action_type=exception.action_type,
        new_start_time=exception.new_start_time,
        new_end_time=exception.new_end_time,
        notes=exception.notes,
    )


@router.post("/rules/{rule_id}/deactivate")
def deactivate_rule(rule_id: UUID, db: Session = Depends(get_db)):
    rule = AppointmentService.deactivate_rule(db, rule_id)
    return {"id": str(rule.id), "is_active": rule.is_active}


@router.post("/{series_id}/exceptions", response_model=ExceptionResponse, status_code=status.HTTP_201_CREATED)
def create_exception(
        series_id: UUID,
        request: ExceptionRequest,
        db: Session = Depends(get_db)
):
    """Cancel (or skip) one occurrence, or move it to a new time."""
    if request.action is ExceptionAction.RESCHEDULED:
        exception = AppointmentService.reschedule_occurrence(
            db, series_id, request.occurrence_date,
            request.new_start_time, request.new_end_time, notes=request.notes,
        )
    else:
        exception = AppointmentService.cancel_occurrence(db, series_id, request.occurrence_date, notes=request.notes)
    return _to_response(exception)


@router.delete("/{series_id}/exceptions/{occurrence_date}")
def restore_occurrence(
        series_id: UUID,
        occurrence_date: date,
        db: Session = Depends(get_db)
):
    deleted = AppointmentService.restore_occurrence(db, series_id, occurrence_date)
    return {"deleted": deleted}
