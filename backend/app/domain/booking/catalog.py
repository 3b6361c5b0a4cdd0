"""
Catalog and ledger lookups used by pricing and booking.

Read-only queries; nothing here mutates state.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.billing_enums import BookingStatus
from backend.app.models.booking import Booking
from backend.app.models.booking_charge import BookingCharge
from backend.app.models.booking_promotion import BookingPromotion
from backend.app.models.car import Car
from backend.app.models.driver_profile import DriverProfile
from backend.app.models.location import Location
from backend.app.models.payment import Payment
from backend.app.models.promotion import Promotion

# Bookings in these states hold the car for their rental window
BLOCKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.ACTIVE)


async def get_car(db: AsyncSession, car_id: int) -> Optional[Car]:
    result = await db.execute(select(Car).where(Car.id == car_id))
    return result.scalar_one_or_none()


async def get_driver_profile(db: AsyncSession, driver_profile_id: int) -> Optional[DriverProfile]:
    result = await db.execute(select(DriverProfile).where(DriverProfile.id == driver_profile_id))
    return result.scalar_one_or_none()


async def get_location(db: AsyncSession, location_id: int) -> Optional[Location]:
    result = await db.execute(select(Location).where(Location.id == location_id))
    return result.scalar_one_or_none()


async def get_promotion(db: AsyncSession, code: str) -> Optional[Promotion]:
    """Look up a promotion by code, case-insensitively."""
    result = await db.execute(
        select(Promotion).where(func.upper(Promotion.code) == code.upper())
    )
    return result.scalar_one_or_none()


async def count_user_promotion_uses(db: AsyncSession, promotion_id: int, user_id: int) -> int:
    """
    Count this user's bookings that carry the promotion.

    Cancelled and rejected bookings still count: the code was spent when the
    booking was placed.
    """
    result = await db.execute(
        select(func.count(BookingPromotion.id))
        .join(Booking, Booking.id == BookingPromotion.booking_id)
        .where(
            BookingPromotion.promotion_id == promotion_id,
            Booking.user_id == user_id,
        )
    )
    return result.scalar_one()


async def has_conflicting_booking(
    db: AsyncSession,
    car_id: int,
    pickup_datetime: datetime,
    return_datetime: datetime,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    """
    Check whether the car is already held for an overlapping window.

    Args:
        db: Database session
        car_id: Car to check
        pickup_datetime: Requested pickup
        return_datetime: Requested return
        exclude_booking_id: Booking to ignore (re-checking an existing booking)

    Returns:
        True if another pending/confirmed/active booking overlaps
    """
    query = select(Booking.id).where(
        Booking.car_id == car_id,
        Booking.status.in_(BLOCKING_STATUSES),
        Booking.pickup_datetime < return_datetime,
        Booking.return_datetime > pickup_datetime,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)

    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none() is not None


async def booking_code_exists(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(Booking.id).where(Booking.booking_code == code))
    return result.scalar_one_or_none() is not None


async def get_booking(db: AsyncSession, booking_id: int, for_update: bool = False) -> Optional[Booking]:
    query = select(Booking).where(Booking.id == booking_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_booking_charge(db: AsyncSession, booking_id: int, for_update: bool = False) -> Optional[BookingCharge]:
    query = select(BookingCharge).where(BookingCharge.booking_id == booking_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_booking_promotion(db: AsyncSession, booking_id: int) -> Optional[BookingPromotion]:
    result = await db.execute(select(BookingPromotion).where(BookingPromotion.booking_id == booking_id))
    return result.scalar_one_or_none()


async def get_payment(db: AsyncSession, payment_id: int, for_update: bool = False) -> Optional[Payment]:
    query = select(Payment).where(Payment.id == payment_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_payment_by_order_id(db: AsyncSession, order_id: str, for_update: bool = False) -> Optional[Payment]:
    query = select(Payment).where(Payment.gateway_order_id == order_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def list_booking_payments(db: AsyncSession, booking_id: int) -> list[Payment]:
    result = await db.execute(
        select(Payment).where(Payment.booking_id == booking_id).order_by(Payment.created_at, Payment.id)
    )
    return list(result.scalars().all())
