# booking_scheduler/utils/logging_config.py
"""Logging configuration shared by the API process and the celery worker"""
import logging
import sys
from booking_scheduler.config.settings import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"

# Third-party loggers that only matter when something is wrong
QUIET_LOGGERS = (
    "sqlalchemy",
    "sqlalchemy.pool",
    "sqlalchemy.orm",
    "alembic",
    "celery",
    "kombu",
    "redis",
    "uvicorn.access",
)


class CorrelationIdFilter(logging.Filter):
    """Gives every record a correlation_id; request logs pass the real one via ``extra``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def setup_logging(verbose=True):
    """Configure application logging"""
    settings = get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO) if verbose else logging.WARNING

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(level=level, handlers=[handler])

    # SQL echo stays off even in verbose mode
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    if not verbose:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.ERROR)
