"""
Booking API Endpoints.

Customers price a rental, book it, pay for it and cancel it.
"""

from fastapi import APIRouter, Depends, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.booking import Booking
from backend.app.models.enums import UserRole
from backend.app.schemas.booking import (
    BookingCreate, BookingCreatedResponse, BookingDetailResponse,
    BookingResponse, BookingChargeResponse, BookingPromotionResponse,
    CancelBookingRequest, CancellationResponse
)
from backend.app.schemas.payment import PaymentCreate, OrderHandle, PaymentResponse
from backend.app.schemas.pricing import Breakdown, QuoteRequest
from backend.app.core.dependencies import (
    get_current_user, get_distance_provider, get_payment_orchestrator
)
from backend.app.core.exceptions import ConsistencyError, ResourceNotFoundError
from backend.app.core.guards import require_role, enforce_booking_access
from backend.app.domain.billing.payment_orchestrator import PaymentOrchestrator
from backend.app.domain.booking import catalog
from backend.app.domain.booking.booking_service import BookingService
from backend.app.domain.pricing.assembler import PricingBreakdownAssembler
from backend.app.services.distance import DistanceProvider

router = APIRouter(prefix="/bookings", tags=["Bookings"])


async def load_booking_detail(db: AsyncSession, booking: Booking) -> BookingDetailResponse:
    """Booking with its charge ledger, applied promotion and payment attempts."""
    charge = await catalog.get_booking_charge(db, booking.id)
    if charge is None:
        raise ConsistencyError("Booking has no charge ledger", details={"booking_id": booking.id})

    promotion = await catalog.get_booking_promotion(db, booking.id)
    payments = await catalog.list_booking_payments(db, booking.id)

    return BookingDetailResponse(
        booking=BookingResponse.model_validate(booking),
        charge=BookingChargeResponse.model_validate(charge),
        promotion=BookingPromotionResponse.model_validate(promotion) if promotion else None,
        payments=[PaymentResponse.model_validate(p) for p in payments],
    )


async def get_booking_or_404(db: AsyncSession, booking_id: int, for_update: bool = False) -> Booking:
    booking = await catalog.get_booking(db, booking_id, for_update=for_update)
    if booking is None:
        raise ResourceNotFoundError("Booking", booking_id)
    return booking


@router.post("/quote", response_model=Breakdown)
async def quote_booking(
    request: QuoteRequest = Body(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    distance_provider: DistanceProvider = Depends(get_distance_provider)
):
    """
    Price a rental without booking it.

    Driver, delivery and promotion problems come back inside their blocks
    (error_kind / error_message); the rest of the breakdown still computes.
    """
    request = request.model_copy(update={"user_id": current_user["user_id"]})
    assembler = PricingBreakdownAssembler(db, distance_provider)
    return await assembler.assemble(request)


@router.post("", response_model=BookingCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    request: BookingCreate = Body(...),
    current_user: dict = Depends(require_role([UserRole.CUSTOMER])),
    db: AsyncSession = Depends(get_db),
    distance_provider: DistanceProvider = Depends(get_distance_provider)
):
    """
    Book a car (Customer only).

    Re-prices the request, then persists booking, charge ledger and applied
    promotion in one transaction.
    """
    request = request.model_copy(update={"user_id": current_user["user_id"]})

    breakdown = await PricingBreakdownAssembler(db, distance_provider).assemble(request)

    booking = await BookingService.create_booking(
        db=db,
        breakdown=breakdown,
        request=request,
        user_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        return_location_id=request.return_location_id,
        special_requests=request.special_requests,
    )

    await db.commit()
    await db.refresh(booking)

    charge = await catalog.get_booking_charge(db, booking.id)

    return BookingCreatedResponse(
        booking=BookingResponse.model_validate(booking),
        charge=BookingChargeResponse.model_validate(charge),
        breakdown=breakdown,
    )


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking(
    booking_id: int = Path(..., description="Booking ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Booking with its charge ledger (booking's customer, car owner or admin)."""
    booking = await get_booking_or_404(db, booking_id)
    enforce_booking_access(booking, current_user)

    return await load_booking_detail(db, booking)


@router.post("/{booking_id}/cancel", response_model=CancellationResponse)
async def cancel_booking(
    booking_id: int = Path(..., description="Booking ID"),
    request: CancelBookingRequest = Body(...),
    current_user: dict = Depends(require_role([UserRole.CUSTOMER, UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Cancel a pending or confirmed booking.

    Reports whether the cancellation was free (made early enough before
    pickup); refunds are issued separately by an admin.
    """
    booking = await get_booking_or_404(db, booking_id, for_update=True)
    enforce_booking_access(booking, current_user)

    result = await BookingService.cancel(
        db=db,
        booking=booking,
        reason=request.reason,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
    )
    await db.commit()

    return CancellationResponse(
        booking_id=booking.id,
        status=booking.status,
        free_cancellation=result.free_cancellation,
        hours_before_pickup=result.hours_before_pickup,
        cancelled_at=booking.cancelled_at,
    )


@router.post("/{booking_id}/payments", response_model=OrderHandle, status_code=status.HTTP_201_CREATED)
async def start_payment(
    booking_id: int = Path(..., description="Booking ID"),
    request: PaymentCreate = Body(...),
    current_user: dict = Depends(require_role([UserRole.CUSTOMER])),
    db: AsyncSession = Depends(get_db),
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator)
):
    """
    Start a gateway payment (deposit, full or partial).

    Returns the approval URL the customer is redirected to.
    """
    booking = await get_booking_or_404(db, booking_id)
    enforce_booking_access(booking, current_user)

    return await orchestrator.create_order(
        booking=booking,
        payment_type=request.payment_type,
        amount=request.amount,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
    )
