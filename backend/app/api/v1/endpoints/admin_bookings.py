"""
Admin Booking Lifecycle Endpoints.

Confirm, reject, hand over and close out bookings.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.schemas.booking import (
    BookingDetailResponse, BookingChargeResponse, RejectBookingRequest,
    StartBookingRequest, CompleteBookingRequest, CompletionResponse
)
from backend.app.core.guards import require_admin
from backend.app.domain.booking.booking_service import BookingService
from backend.app.api.v1.endpoints.bookings import get_booking_or_404, load_booking_detail

router = APIRouter(prefix="/admin/bookings", tags=["Admin - Bookings"])


@router.post("/{booking_id}/confirm", response_model=BookingDetailResponse)
async def confirm_booking(
    booking_id: int = Path(..., description="Booking ID"),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Confirm a pending booking without waiting for payment."""
    booking = await get_booking_or_404(db, booking_id, for_update=True)

    await BookingService.confirm(db, booking, actor_id=admin["user_id"], actor_username=admin.get("sub"))
    await db.commit()

    return await load_booking_detail(db, booking)


@router.post("/{booking_id}/reject", response_model=BookingDetailResponse)
async def reject_booking(
    booking_id: int = Path(..., description="Booking ID"),
    request: RejectBookingRequest = Body(...),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Reject a pending or confirmed booking."""
    booking = await get_booking_or_404(db, booking_id, for_update=True)

    await BookingService.reject(
        db, booking, reason=request.reason, actor_id=admin["user_id"], actor_username=admin.get("sub")
    )
    await db.commit()

    return await load_booking_detail(db, booking)


@router.post("/{booking_id}/start", response_model=BookingDetailResponse)
async def start_booking(
    booking_id: int = Path(..., description="Booking ID"),
    request: Optional[StartBookingRequest] = Body(None),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Hand the car over: confirmed -> active."""
    request = request or StartBookingRequest()
    booking = await get_booking_or_404(db, booking_id, for_update=True)

    await BookingService.start(
        db, booking, actor_id=admin["user_id"], actor_username=admin.get("sub"),
        actual_pickup_time=request.actual_pickup_time,
    )
    await db.commit()

    return await load_booking_detail(db, booking)


@router.post("/{booking_id}/complete", response_model=CompletionResponse)
async def complete_booking(
    booking_id: int = Path(..., description="Booking ID"),
    request: Optional[CompleteBookingRequest] = Body(None),
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Close out an active booking.

    Charges overtime for a late return plus any extra fee, and recomputes
    VAT, total and balance due.
    """
    request = request or CompleteBookingRequest()
    booking = await get_booking_or_404(db, booking_id, for_update=True)

    result = await BookingService.complete(
        db,
        booking,
        actor_id=admin["user_id"],
        actor_username=admin.get("sub"),
        actual_return_time=request.actual_return_time,
        extra_fee=request.extra_fee,
        extra_fee_reason=request.extra_fee_reason,
    )
    await db.commit()

    return CompletionResponse(
        booking_id=booking.id,
        status=booking.status,
        late_hours=result.overtime.late_hours,
        overtime_fee=result.overtime.fee,
        extra_fee=result.extra_fee,
        charge=BookingChargeResponse.model_validate(result.charge),
    )
