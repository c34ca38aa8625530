"""Health checks and monitoring endpoints"""
import logging

import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_scheduler.config.database import get_db
from booking_scheduler.config.redis import get_redis
from booking_scheduler.config.settings import get_settings

logger = logging.getLogger(__name__)

health_router = APIRouter()


@health_router.get("")
def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": get_settings().APP_NAME}


@health_router.get("/detailed")
def detailed_health_check(db: Session = Depends(get_db)):
    """Detailed health check with dependencies"""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
        "overall": "unknown"
    }

    # Check database
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except SQLAlchemyError as e:
        checks["database"] = f"unhealthy: {str(e)}"

    # Check Redis, only when it backs the availability cache
    if get_settings().AVAILABILITY_CACHE_BACKEND == "redis":
        try:
            get_redis().ping()
            checks["redis"] = "healthy"
        except redis.RedisError as e:
            checks["redis"] = f"unhealthy: {str(e)}"

    # Overall status
    if all(status == "healthy" for status in checks.values() if status != "unknown"):
        checks["overall"] = "healthy"
    else:
        checks["overall"] = "degraded"
        logger.warning(f"Health check degraded: {checks}")

    return checks
