# booking_scheduler/core/middleware.py
"""Request tracing, request logging and scheduling error translation"""
import uuid
import time
import logging
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request

from booking_scheduler.core.errors import (
    InvalidRecurrenceError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    SchedulingError,
    SlotConflictError,
    SlotLockError,
    user_message,
)

logger = logging.getLogger(__name__)

# Most specific class first
ERROR_STATUS_CODES = (
    (SlotConflictError, 409),
    (SlotLockError, 409),
    (NotFoundError, 404),
    (InvalidTransitionError, 422),
    (InvalidRecurrenceError, 422),
    (PersistenceError, 503),
)


async def correlation_id_middleware(request: Request, call_next):
    """Add correlation ID to all requests for tracing"""
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
    request.state.correlation_id = correlation_id

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


async def request_logging_middleware(request: Request, call_next):
    """Log all incoming requests"""
    start_time = time.time()
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({duration * 1000:.1f}ms)",
        extra={
            "correlation_id": correlation_id,
            "status_code": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
    )

    return response


def status_code_for(exc: SchedulingError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 400


async def scheduling_error_handler(request: Request, exc: SchedulingError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc}")

    body = {"detail": user_message(exc)}
    reason = getattr(exc, "reason", None)
    if reason:
        body["reason"] = reason
    if isinstance(exc, PersistenceError):
        body["retryable"] = exc.retryable
    return JSONResponse(status_code=status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
