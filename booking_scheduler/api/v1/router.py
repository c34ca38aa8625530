"""
API v1 router setup
No authentication layer: provider and client ids are passed explicitly
"""
from fastapi import APIRouter

from booking_scheduler.api.v1 import appointments, availability, calendar, checkout, recurring

api_v1_router = APIRouter()

api_v1_router.include_router(
    calendar.router,
    prefix="/calendar",
    tags=["Calendar"]
)

api_v1_router.include_router(
    availability.router,
    prefix="/availability",
    tags=["Availability"]
)

api_v1_router.include_router(
    checkout.router,
    prefix="/checkout",
    tags=["Checkout"]
)

api_v1_router.include_router(
    recurring.router,
    prefix="/recurring",
    tags=["Recurring"]
)

api_v1_router.include_router(
    appointments.router,
    prefix="/appointments",
    tags=["Appointments"]
)


@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """API information and available endpoint groups."""
    return {
        "version": "1.0",
        "groups": ["calendar", "availability", "checkout", "recurring", "appointments"],
    }
