# ============================================================================
# FILE: booking_scheduler/api/v1/checkout.py
# Slot locks held while the client completes payment
# ============================================================================
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from booking_scheduler.api.dependencies import get_lock_service
from booking_scheduler.config.database import get_db
from booking_scheduler.schemas.api import LockResponse, SlotIdsRequest
from booking_scheduler.services.slots.slot_lock_service import SlotLockService

router = APIRouter(tags=["checkout"])


@router.post("/locks", response_model=LockResponse)
def acquire_locks(
        request: SlotIdsRequest,
        db: Session = Depends(get_db),
        locks: SlotLockService = Depends(get_lock_service)
):
    """All-or-nothing lock of the selected slots. 409 when any of them is taken."""
    result = locks.acquire_lock(db, request.slot_ids)
    if not result.acquired:
        status_code = 422 if not result.slot_ids else 409
        raise HTTPException(status_code=status_code, detail=result.reason)

    return LockResponse(
        acquired=True,
        slot_ids=result.slot_ids,
        expires_at=result.expires_at,
        lock_token=result.lock_token,
        time_remaining=result.lock.format_time_remaining(),
    )


# Also accepts a body on DELETE, sent by the checkout page when it is abandoned
@router.delete("/locks")
def release_locks(
        request: SlotIdsRequest,
        quiet: bool = False,
        db: Session = Depends(get_db),
        locks: SlotLockService = Depends(get_lock_service)
):
    if quiet:
        released = locks.release_lock_quietly(db, request.slot_ids, lock_token=request.lock_token)
    else:
        released = locks.release_lock(db, request.slot_ids, lock_token=request.lock_token)
    return {"released": released}


@router.post("/locks/complete")
def complete_booking(
        request: SlotIdsRequest,
        db: Session = Depends(get_db),
        locks: SlotLockService = Depends(get_lock_service)
):
    """Turn a held lock into a reservation once payment succeeded. 409 unless the token still holds every slot."""
    reserved = locks.complete_booking(db, request.slot_ids, request.lock_token)
    return {"reserved": reserved}
