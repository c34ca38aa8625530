# booking_scheduler/config/celery_config.py
"""Celery configuration and task routing"""
from celery import Celery
from kombu import Queue

from booking_scheduler.config.settings import get_settings

settings = get_settings()


def create_celery_app() -> Celery:
    """Create and configure Celery application"""

    celery_app = Celery(
        "booking_scheduler",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,

        # Task routing
        task_routes={
            "booking_scheduler.tasks.appointment_tasks.*": {"queue": "appointments"},
        },

        task_queues=(
            Queue("appointments", routing_key="appointments"),
        ),

        # Periodic sweep of appointments whose end time has passed
        beat_schedule={
            "complete-past-appointments": {
                "task": "booking_scheduler.tasks.appointment_tasks.complete_past_appointments",
                "schedule": settings.COMPLETION_SWEEP_INTERVAL_MINUTES * 60,
            },
        },

        # Worker settings
        worker_max_tasks_per_child=1000,
        worker_prefetch_multiplier=1,
        task_acks_late=True,

        broker_connection_retry_on_startup=True,
    )

    celery_app.autodiscover_tasks([
        "booking_scheduler.tasks",
    ], related_name="appointment_tasks")

    return celery_app


# Create the Celery app instance
celery_app = create_celery_app()
