"""
Booking Service (Domain Logic).

Persists priced bookings and drives them through their lifecycle. Methods
add and flush; the caller commits, so a booking, its charge ledger and its
audit entries land in one transaction.
"""

import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    BookingValidationError,
    BusinessRuleError,
    ConsistencyError,
)
from backend.app.core.timeutils import ensure_utc, utcnow
from backend.app.domain.billing.ledger import SettlementLedger
from backend.app.domain.booking import catalog
from backend.app.domain.booking.state_machine import ensure_transition
from backend.app.domain.pricing.money import ZERO, to_money
from backend.app.domain.pricing.overtime import OvertimeResult, calculate_overtime_fee
from backend.app.models.billing_enums import BookingStatus, PaymentMethod
from backend.app.models.booking import Booking
from backend.app.models.booking_charge import BookingCharge
from backend.app.models.booking_promotion import BookingPromotion
from backend.app.models.promotion import Promotion
from backend.app.schemas.pricing import Breakdown, QuoteRequest
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5


class CancellationResult(NamedTuple):
    booking: Booking
    free_cancellation: bool
    hours_before_pickup: Decimal


class CompletionResult(NamedTuple):
    booking: Booking
    charge: BookingCharge
    overtime: OvertimeResult
    extra_fee: Decimal


async def generate_booking_code(db: AsyncSession, now: Optional[datetime] = None) -> str:
    """Booking code of the form BK-2026-1A2B3C, unique among existing bookings."""
    year = (now or utcnow()).year
    for _ in range(MAX_CODE_ATTEMPTS):
        code = f"{settings.booking_code_prefix}-{year}-{secrets.token_hex(3).upper()}"
        if not await catalog.booking_code_exists(db, code):
            return code
    raise ConsistencyError("Could not allocate a unique booking code")


async def claim_promotion_use(db: AsyncSession, promotion_id: int) -> bool:
    """Count one use of the promotion unless its global cap is already reached."""
    result = await db.execute(
        update(Promotion)
        .where(
            Promotion.id == promotion_id,
            or_(Promotion.max_uses.is_(None), Promotion.used_count < Promotion.max_uses),
        )
        .values(used_count=Promotion.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class BookingService:

    @staticmethod
    async def create_booking(
        db: AsyncSession,
        breakdown: Breakdown,
        request: QuoteRequest,
        user_id: int,
        actor_username: Optional[str] = None,
        return_location_id: Optional[int] = None,
        special_requests: Optional[str] = None,
    ) -> Booking:
        """
        Persist a priced checkout as Booking + BookingCharge (+ BookingPromotion).

        Flow:
        1. Validate locations
        2. Refuse a requested driver or delivery that could not be priced
        3. Availability check against overlapping bookings
        4. Create booking with rate snapshots, then its charge ledger
        5. Record the applied promotion and bump its usage counter

        Args:
            db: Database session (caller commits)
            breakdown: Output of PricingBreakdownAssembler for `request`
            request: The checkout request that was priced
            user_id: Customer placing the booking
            actor_username: Username for the audit trail
            return_location_id: Defaults to the pickup location
            special_requests: Free text from the customer

        Returns:
            Created booking (flushed, not committed)

        Raises:
            BookingValidationError: Missing or unknown pickup/return location
            BusinessRuleError: Car unavailable, driver/delivery not priceable, or promotion exhausted
        """
        pickup_location_id = breakdown.pickup_location_id
        if pickup_location_id is None:
            raise BookingValidationError("A pickup location is required")
        return_location_id = return_location_id or pickup_location_id

        for field, location_id in (("pickup_location_id", pickup_location_id),
                                   ("return_location_id", return_location_id)):
            if await catalog.get_location(db, location_id) is None:
                raise BookingValidationError(
                    f"Location {location_id} does not exist", details={field: location_id}
                )

        if breakdown.driver.requested and breakdown.driver.error_kind is not None:
            raise BusinessRuleError(
                breakdown.driver.error_message,
                error_code="ERR_RULE_003",
                details={"error_kind": breakdown.driver.error_kind.value},
            )
        if breakdown.delivery.requested and not breakdown.delivery.allowed:
            raise BusinessRuleError(
                breakdown.delivery.error_message,
                error_code="ERR_RULE_004",
                details={
                    "error_kind": breakdown.delivery.error_kind.value,
                    "distance_km": breakdown.delivery.distance_km,
                },
            )

        if await catalog.has_conflicting_booking(
            db, breakdown.car.id, breakdown.pickup_datetime, breakdown.return_datetime
        ):
            raise BusinessRuleError(
                "Car is not available for the selected dates",
                error_code="ERR_RULE_005",
                details={"car_id": breakdown.car.id},
            )

        now = utcnow()
        rental = breakdown.rental
        driver = breakdown.driver
        delivery = breakdown.delivery

        booking = Booking(
            booking_code=await generate_booking_code(db, now),
            user_id=user_id,
            owner_id=breakdown.car.owner_id,
            car_id=breakdown.car.id,
            pickup_location_id=pickup_location_id,
            return_location_id=return_location_id,
            pickup_datetime=breakdown.pickup_datetime,
            return_datetime=breakdown.return_datetime,
            hourly_rate=rental.hourly_rate,
            daily_rate=rental.daily_rate,
            daily_hour_threshold=rental.daily_hour_threshold,
            deposit_amount=breakdown.deposit_amount,
            overtime_fee_per_hour=breakdown.overtime_fee_per_hour,
            with_driver=driver.requested,
            driver_profile_id=driver.driver_profile_id if driver.requested else None,
            driver_hourly_fee=driver.hourly_fee,
            driver_daily_fee=driver.daily_fee,
            driver_daily_hour_threshold=driver.daily_hour_threshold,
            total_driver_hours=driver.total_driver_hours,
            is_delivery=delivery.requested,
            delivery_address=request.delivery_address if delivery.requested else None,
            delivery_distance_km=delivery.distance_km,
            delivery_fee_per_km=delivery.fee_per_km,
            status=BookingStatus.PENDING,
            payment_method=PaymentMethod.PAYPAL,
            special_requests=special_requests,
        )
        db.add(booking)
        await db.flush()  # booking.id for the ledger

        charge = SettlementLedger.charge_from_breakdown(booking.id, breakdown)
        db.add(charge)

        discount = breakdown.discount
        if discount.valid:
            if not await claim_promotion_use(db, discount.promotion_id):
                raise BusinessRuleError(
                    "Promotion usage limit reached",
                    error_code="ERR_RULE_006",
                    details={"code": discount.promotion_code},
                )
            db.add(BookingPromotion(
                booking_id=booking.id,
                promotion_id=discount.promotion_id,
                applied_by=user_id,
                promotion_code=discount.promotion_code,
                discount_amount=discount.discount_amount,
                promotion_details=discount.snapshot.model_dump(mode="json"),
            ))

            await log_event(
                db=db,
                action=AuditAction.PROMOTION_APPLIED,
                actor_id=user_id,
                actor_username=actor_username,
                booking_id=booking.id,
                metadata={"code": discount.promotion_code, "discount_amount": str(discount.discount_amount)},
            )

        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.BOOKING_CREATED,
            actor_id=user_id,
            actor_username=actor_username,
            booking_id=booking.id,
            metadata={
                "booking_code": booking.booking_code,
                "car_id": booking.car_id,
                "total_amount": str(charge.total_amount),
            },
        )

        logger.info("Booking %s created for car %s", booking.booking_code, booking.car_id)
        return booking

    @staticmethod
    async def confirm(
        db: AsyncSession,
        booking: Booking,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
    ) -> Booking:
        """pending -> confirmed. `actor_id` is None when a captured payment confirms."""
        ensure_transition(booking, BookingStatus.CONFIRMED)

        booking.status = BookingStatus.CONFIRMED
        booking.confirmed_at = utcnow()
        booking.confirmed_by = actor_id
        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.BOOKING_CONFIRMED,
            actor_id=actor_id,
            actor_username=actor_username,
            booking_id=booking.id,
        )
        return booking

    @staticmethod
    async def reject(
        db: AsyncSession,
        booking: Booking,
        reason: str,
        actor_id: int,
        actor_username: Optional[str] = None,
    ) -> Booking:
        """pending|confirmed -> rejected."""
        if not reason or not reason.strip():
            raise BookingValidationError("A rejection reason is required")
        ensure_transition(booking, BookingStatus.REJECTED)

        booking.status = BookingStatus.REJECTED
        booking.cancellation_reason = reason.strip()
        booking.cancelled_at = utcnow()
        booking.cancelled_by = actor_id
        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.BOOKING_REJECTED,
            actor_id=actor_id,
            actor_username=actor_username,
            booking_id=booking.id,
            metadata={"reason": booking.cancellation_reason},
        )
        return booking

    @staticmethod
    async def start(
        db: AsyncSession,
        booking: Booking,
        actor_id: int,
        actor_username: Optional[str] = None,
        actual_pickup_time: Optional[datetime] = None,
    ) -> Booking:
        """confirmed -> active; stamps the actual pickup time."""
        ensure_transition(booking, BookingStatus.ACTIVE)

        booking.status = BookingStatus.ACTIVE
        booking.actual_pickup_time = ensure_utc(actual_pickup_time) or utcnow()
        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.BOOKING_STARTED,
            actor_id=actor_id,
            actor_username=actor_username,
            booking_id=booking.id,
            metadata={"actual_pickup_time": booking.actual_pickup_time.isoformat()},
        )
        return booking

    @staticmethod
    async def complete(
        db: AsyncSession,
        booking: Booking,
        actor_id: int,
        actor_username: Optional[str] = None,
        actual_return_time: Optional[datetime] = None,
        extra_fee: Optional[Decimal] = None,
        extra_fee_reason: Optional[str] = None,
    ) -> CompletionResult:
        """
        active -> completed.

        Overtime is charged from the booking's overtime-rate snapshot. Overtime
        and any admin extra fee go into the ledger, which recomputes subtotal,
        VAT, total and balance.
        """
        ensure_transition(booking, BookingStatus.COMPLETED)

        charge = await catalog.get_booking_charge(db, booking.id, for_update=True)
        if charge is None:
            raise ConsistencyError("Booking has no charge ledger", details={"booking_id": booking.id})

        returned_at = ensure_utc(actual_return_time) or utcnow()
        overtime = calculate_overtime_fee(booking.return_datetime, returned_at, booking.overtime_fee_per_hour or 0)

        if overtime.is_late:
            SettlementLedger.apply_extra_fee(
                charge,
                kind="overtime",
                amount=overtime.fee,
                reason=f"Late return by {overtime.late_hours} hour(s)",
                added_at=returned_at,
            )

        admin_fee = to_money(extra_fee) if extra_fee is not None else ZERO
        if admin_fee < ZERO:
            raise BookingValidationError("Extra fee cannot be negative")
        if admin_fee > ZERO:
            SettlementLedger.apply_extra_fee(
                charge,
                kind="admin",
                amount=admin_fee,
                reason=extra_fee_reason,
                added_at=returned_at,
            )

        booking.status = BookingStatus.COMPLETED
        booking.actual_return_time = returned_at
        await db.flush()

        if overtime.is_late or admin_fee > ZERO:
            await log_event(
                db=db,
                action=AuditAction.EXTRA_FEE_APPLIED,
                actor_id=actor_id,
                actor_username=actor_username,
                booking_id=booking.id,
                metadata={
                    "overtime_hours": overtime.late_hours,
                    "overtime_fee": str(overtime.fee),
                    "extra_fee": str(admin_fee),
                    "reason": extra_fee_reason,
                    "total_amount": str(charge.total_amount),
                },
            )

        await log_event(
            db=db,
            action=AuditAction.BOOKING_COMPLETED,
            actor_id=actor_id,
            actor_username=actor_username,
            booking_id=booking.id,
            metadata={"actual_return_time": returned_at.isoformat()},
        )

        return CompletionResult(booking=booking, charge=charge, overtime=overtime, extra_fee=admin_fee)

    @staticmethod
    async def cancel(
        db: AsyncSession,
        booking: Booking,
        reason: str,
        actor_id: int,
        actor_username: Optional[str] = None,
    ) -> CancellationResult:
        """
        pending|confirmed -> cancelled.

        Reports whether the cancellation was early enough to be free; no
        refund is computed here.
        """
        if not reason or not reason.strip():
            raise BookingValidationError("A cancellation reason is required")
        ensure_transition(booking, BookingStatus.CANCELLED)

        now = utcnow()
        seconds_before = (ensure_utc(booking.pickup_datetime) - now).total_seconds()
        hours_before = to_money(Decimal(seconds_before) / Decimal(3600))
        free_cancellation = now <= ensure_utc(booking.pickup_datetime) - timedelta(
            hours=settings.free_cancellation_hours
        )

        booking.status = BookingStatus.CANCELLED
        booking.cancellation_reason = reason.strip()
        booking.cancelled_at = now
        booking.cancelled_by = actor_id
        await db.flush()

        await log_event(
            db=db,
            action=AuditAction.BOOKING_CANCELLED,
            actor_id=actor_id,
            actor_username=actor_username,
            booking_id=booking.id,
            metadata={
                "reason": booking.cancellation_reason,
                "free_cancellation": free_cancellation,
                "hours_before_pickup": str(hours_before),
            },
        )

        logger.info("Booking %s cancelled (free=%s)", booking.booking_code, free_cancellation)
        return CancellationResult(booking=booking, free_cancellation=free_cancellation, hours_before_pickup=hours_before)
