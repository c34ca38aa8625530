# ===== booking_scheduler/tasks/appointment_tasks.py =====
"""Periodic appointment maintenance"""
import logging

from booking_scheduler.config.celery_config import celery_app
from booking_scheduler.config.database import get_db
from booking_scheduler.core.errors import classify_error
from booking_scheduler.services.appointment.appointment_service import AppointmentService

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, max_retries=3)
def complete_past_appointments(self):
    """Mark confirmed / scheduled appointments whose end time passed as completed"""
    db = next(get_db())
    try:
        completed = AppointmentService.complete_past_appointments(db)
        return {"status": "success", "completed": completed}

    except Exception as exc:
        logger.error(f"Completion sweep failed: {exc}")
        if classify_error(exc):
            raise self.retry(exc=exc, countdown=60)
        raise

    finally:
        db.close()
