"""
Test data builders shared across test modules.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.jwt import create_access_token
from backend.app.domain.booking.booking_service import BookingService
from backend.app.domain.pricing.assembler import PricingBreakdownAssembler
from backend.app.models.billing_enums import DiscountType, PromotionStatus
from backend.app.models.enums import UserRole
from backend.app.models.promotion import Promotion
from backend.app.models.user import User
from backend.app.schemas.pricing import QuoteRequest
from backend.app.services.distance import FixedDistanceProvider


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": user.username, "user_id": user.id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


async def create_user(db: AsyncSession, username: str, role: UserRole) -> User:
    user = User(email=f"{username}@test.com", username=username, full_name=username.title(), role=role)
    db.add(user)
    await db.flush()
    return user


async def create_promotion(
    db: AsyncSession,
    code: str = "SUMMER20",
    discount_type: DiscountType = DiscountType.PERCENTAGE,
    discount_value: Decimal = Decimal("20"),
    max_discount: Optional[Decimal] = None,
    min_amount: Decimal = Decimal("0"),
    min_rental_hours: int = 0,
    max_uses: Optional[int] = None,
    max_uses_per_user: int = 1,
    used_count: int = 0,
    status: PromotionStatus = PromotionStatus.ACTIVE,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Promotion:
    now = datetime.now(timezone.utc)
    promotion = Promotion(
        code=code,
        name=f"{code} promotion",
        description="Test promotion",
        discount_type=discount_type,
        discount_value=discount_value,
        max_discount=max_discount,
        min_amount=min_amount,
        min_rental_hours=min_rental_hours,
        max_uses=max_uses,
        max_uses_per_user=max_uses_per_user,
        used_count=used_count,
        status=status,
        start_date=start_date or now - timedelta(days=1),
        end_date=end_date or now + timedelta(days=30),
    )
    db.add(promotion)
    await db.commit()
    return promotion


def rental_window(hours: int, days_ahead: int = 3):
    """Pickup `days_ahead` days from now at 08:00 UTC, return `hours` later."""
    pickup = (datetime.now(timezone.utc) + timedelta(days=days_ahead)).replace(
        hour=8, minute=0, second=0, microsecond=0
    )
    return pickup, pickup + timedelta(hours=hours)


async def place_booking(db: AsyncSession, catalog: dict, hours: int = 14, days_ahead: int = 3,
                        pickup: Optional[datetime] = None, km: str = "10", **overrides):
    """Price and persist a booking for the catalog customer, then commit."""
    if pickup is None:
        pickup, ret = rental_window(hours, days_ahead=days_ahead)
    else:
        ret = pickup + timedelta(hours=hours)
    fields = dict(
        car_id=catalog["car"].id,
        pickup_datetime=pickup,
        return_datetime=ret,
        user_id=catalog["customer"].id,
    )
    fields.update(overrides)
    request = QuoteRequest(**fields)

    breakdown = await PricingBreakdownAssembler(db, FixedDistanceProvider(Decimal(km))).assemble(request)
    booking = await BookingService.create_booking(
        db, breakdown, request, user_id=catalog["customer"].id, actor_username="customer"
    )
    await db.commit()
    return booking
