"""
Promotion code validation and discount computation.

Gates run in a fixed order; the first failing gate decides the error kind
and no discount is applied. Failures are returned as data so checkout can
show them inline.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.timeutils import ensure_utc, utcnow
from backend.app.domain.booking import catalog
from backend.app.domain.pricing.money import ZERO, Number, to_decimal, to_money
from backend.app.models.billing_enums import DiscountType, PromotionStatus
from backend.app.models.promotion import Promotion
from backend.app.schemas.pricing import DiscountBlock, PromotionErrorKind, PromotionSnapshot


def compute_discount(
    discount_type: DiscountType,
    discount_value: Number,
    base_amount: Number,
    max_discount: Optional[Number] = None,
) -> Decimal:
    """
    Discount for a promotion that passed every gate.

    Percentage discounts are capped at `max_discount` when set. Neither kind
    ever exceeds the base amount or goes negative.
    """
    base = to_decimal(base_amount)
    value = to_decimal(discount_value)

    if discount_type == DiscountType.PERCENTAGE:
        discount = to_money(base * value / Decimal("100"))
        if max_discount is not None:
            discount = min(discount, to_money(max_discount))
    else:
        discount = min(to_money(value), to_money(base))

    return to_money(max(ZERO, min(discount, to_money(base))))


def build_snapshot(promotion: Promotion) -> PromotionSnapshot:
    return PromotionSnapshot(
        name=promotion.name,
        description=promotion.description,
        discount_type=promotion.discount_type,
        discount_value=to_money(promotion.discount_value),
        max_discount=to_money(promotion.max_discount) if promotion.max_discount is not None else None,
        min_amount=to_money(promotion.min_amount or 0),
        min_rental_hours=promotion.min_rental_hours or 0,
    )


class PromotionValidator:
    """Checks a code against status, window, minimums and usage caps."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def validate(
        self,
        code: Optional[str],
        base_amount: Number,
        user_id: Optional[int],
        rental_hours: int,
    ) -> DiscountBlock:
        """
        Validate `code` for a rental.

        Args:
            code: Promotion code as entered (None/blank means no promotion)
            base_amount: Car rental amount the discount applies to
            user_id: Customer, for the per-user cap (skipped when None)
            rental_hours: Billable rental hours

        Returns:
            DiscountBlock with valid=True and the discount, or the failing
            gate's error kind
        """
        if not code or not code.strip():
            return DiscountBlock(valid=False)

        code = code.strip()
        base_amount = to_money(base_amount)

        promotion = await catalog.get_promotion(self.db, code)
        if promotion is None:
            return _rejected(code, PromotionErrorKind.CODE_NOT_FOUND, "Invalid promotion code.")

        if promotion.status != PromotionStatus.ACTIVE:
            return _rejected(
                code, PromotionErrorKind.NOT_ACTIVE, "This promotion is not currently active.", promotion
            )

        now = ensure_utc(self.clock())
        if not (ensure_utc(promotion.start_date) <= now <= ensure_utc(promotion.end_date)):
            return _rejected(
                code, PromotionErrorKind.OUT_OF_WINDOW, "This promotion is not valid at this time.", promotion
            )

        min_amount = to_money(promotion.min_amount or 0)
        if base_amount < min_amount:
            return _rejected(
                code,
                PromotionErrorKind.BELOW_MINIMUM_AMOUNT,
                f"Minimum order amount of {min_amount} required.",
                promotion,
            )

        min_hours = promotion.min_rental_hours or 0
        if rental_hours < min_hours:
            return _rejected(
                code,
                PromotionErrorKind.BELOW_MINIMUM_DURATION,
                f"Minimum rental duration of {min_hours} hours required.",
                promotion,
            )

        if promotion.max_uses is not None and (promotion.used_count or 0) >= promotion.max_uses:
            return _rejected(
                code,
                PromotionErrorKind.GLOBAL_LIMIT_REACHED,
                "This promotion has reached its usage limit.",
                promotion,
            )

        if user_id is not None:
            uses = await catalog.count_user_promotion_uses(self.db, promotion.id, user_id)
            if uses >= promotion.max_uses_per_user:
                return _rejected(
                    code,
                    PromotionErrorKind.PER_USER_LIMIT_REACHED,
                    "You have already used this promotion the maximum number of times.",
                    promotion,
                )

        discount = compute_discount(
            promotion.discount_type,
            promotion.discount_value,
            base_amount,
            promotion.max_discount,
        )

        return DiscountBlock(
            valid=True,
            promotion_id=promotion.id,
            promotion_code=promotion.code,
            discount_amount=discount,
            snapshot=build_snapshot(promotion),
        )


def _rejected(
    code: str,
    kind: PromotionErrorKind,
    message: str,
    promotion: Optional[Promotion] = None,
) -> DiscountBlock:
    return DiscountBlock(
        valid=False,
        promotion_id=promotion.id if promotion is not None else None,
        promotion_code=promotion.code if promotion is not None else code,
        error_kind=kind,
        error_message=message,
    )
