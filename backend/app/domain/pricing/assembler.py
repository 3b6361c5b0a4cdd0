"""
Pricing breakdown assembly.

Turns a checkout request into a Breakdown. Pure computation: reads the
catalog, writes nothing. Only a missing car aborts; driver, delivery and
promotion problems degrade into their blocks with an error message.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.exceptions import BookingValidationError, ResourceNotFoundError
from backend.app.core.timeutils import ceil_hours_between, utcnow
from backend.app.domain.booking import catalog
from backend.app.domain.pricing import rate_converter
from backend.app.domain.pricing.delivery import DeliveryFeeCalculator
from backend.app.domain.pricing.money import ZERO, to_decimal, to_money
from backend.app.domain.pricing.promotion_validator import PromotionValidator
from backend.app.models.car import Car
from backend.app.schemas.pricing import (
    Breakdown,
    CarSummary,
    DriverBlock,
    DriverErrorKind,
    QuoteRequest,
    RentalBlock,
)
from backend.app.services.distance import DistanceProvider

logger = logging.getLogger(__name__)


class PricingBreakdownAssembler:
    """Composes rental, driver, delivery and discount blocks into totals."""

    def __init__(
        self,
        db: AsyncSession,
        distance_provider: DistanceProvider,
        settings: Optional[Settings] = None,
        promotion_validator: Optional[PromotionValidator] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.delivery_calculator = DeliveryFeeCalculator(distance_provider)
        self.promotion_validator = promotion_validator or PromotionValidator(db)

    async def assemble(self, request: QuoteRequest) -> Breakdown:
        """
        Price a checkout request.

        Args:
            request: Validated checkout request

        Returns:
            Breakdown (not persisted)

        Raises:
            BookingValidationError: If the rental window is empty or inverted
            ResourceNotFoundError: If the car does not exist
        """
        if request.return_datetime <= request.pickup_datetime:
            raise BookingValidationError(
                "Return time must be after pickup time",
                details={
                    "pickup_datetime": request.pickup_datetime.isoformat(),
                    "return_datetime": request.return_datetime.isoformat(),
                },
            )

        car = await catalog.get_car(self.db, request.car_id)
        if car is None:
            raise ResourceNotFoundError("Car", request.car_id)

        # 1. Rental
        total_hours = ceil_hours_between(request.pickup_datetime, request.return_datetime)
        threshold = car.daily_hour_threshold or self.settings.default_daily_hour_threshold
        conversion = rate_converter.convert(total_hours, car.hourly_rate, car.daily_rate, threshold)
        rental = RentalBlock(
            total_hours=total_hours,
            total_days=conversion.days,
            remaining_hours=conversion.remaining_hours,
            hourly_rate=to_money(car.hourly_rate),
            daily_rate=to_money(car.daily_rate),
            daily_hour_threshold=threshold,
            base_amount=conversion.amount,
        )

        # 2. Driver
        driver = await self._price_driver(request, total_hours)

        # 3. Delivery
        pickup_location_id = request.pickup_location_id or car.location_id
        pickup_location = None
        if request.is_delivery and pickup_location_id is not None:
            pickup_location = await catalog.get_location(self.db, pickup_location_id)
        delivery = await self.delivery_calculator.calculate(
            request.is_delivery, request.delivery_address, pickup_location, car
        )

        # 4. Discount, against the rental amount only
        discount = await self.promotion_validator.validate(
            request.promotion_code, rental.base_amount, request.user_id, total_hours
        )

        # 5-8. Totals
        insurance_fee = to_money(request.insurance_fee)
        extra_fee = to_money(request.extra_fee)
        subtotal = to_money(
            rental.base_amount
            + delivery.fee
            + driver.fee_amount
            + insurance_fee
            + extra_fee
            - discount.discount_amount
        )
        vat_rate = to_decimal(self.settings.vat_rate) if request.apply_vat else ZERO
        vat_amount = to_money(subtotal * vat_rate)
        total_amount = to_money(subtotal + vat_amount)
        deposit_amount = to_money(car.deposit_amount or 0)
        balance_due = to_money(total_amount - ZERO - deposit_amount)

        logger.debug(
            "Priced car %s for %sh: base=%s total=%s",
            car.id, total_hours, rental.base_amount, total_amount,
        )

        return Breakdown(
            car=_summarize(car),
            pickup_datetime=request.pickup_datetime,
            return_datetime=request.return_datetime,
            pickup_location_id=pickup_location_id,
            rental=rental,
            driver=driver,
            delivery=delivery,
            discount=discount,
            insurance_fee=insurance_fee,
            extra_fee=extra_fee,
            subtotal=subtotal,
            vat_rate=vat_rate,
            vat_amount=vat_amount,
            total_amount=total_amount,
            overtime_fee_per_hour=to_money(car.overtime_fee_per_hour or 0),
            deposit_amount=deposit_amount,
            amount_paid=ZERO,
            balance_due=balance_due,
            calculated_at=utcnow(),
        )

    async def _price_driver(self, request: QuoteRequest, total_hours: int) -> DriverBlock:
        if not request.with_driver:
            return DriverBlock(requested=False)

        if request.driver_profile_id is None:
            return DriverBlock(
                requested=True,
                error_kind=DriverErrorKind.DRIVER_NOT_SELECTED,
                error_message="Please select a driver.",
            )

        profile = await catalog.get_driver_profile(self.db, request.driver_profile_id)
        if profile is None:
            return DriverBlock(
                requested=True,
                driver_profile_id=request.driver_profile_id,
                error_kind=DriverErrorKind.DRIVER_NOT_FOUND,
                error_message="Selected driver does not exist.",
            )

        if not profile.is_available_for_booking:
            return DriverBlock(
                requested=True,
                driver_profile_id=profile.id,
                error_kind=DriverErrorKind.DRIVER_UNAVAILABLE,
                error_message="Selected driver is not available for booking.",
            )

        threshold = profile.daily_hour_threshold or self.settings.default_daily_hour_threshold
        conversion = rate_converter.convert(total_hours, profile.hourly_fee, profile.daily_fee, threshold)

        return DriverBlock(
            requested=True,
            driver_profile_id=profile.id,
            total_driver_hours=total_hours,
            driver_days=conversion.days,
            driver_remaining_hours=conversion.remaining_hours,
            hourly_fee=to_money(profile.hourly_fee),
            daily_fee=to_money(profile.daily_fee),
            daily_hour_threshold=threshold,
            fee_amount=conversion.amount,
        )


def _summarize(car: Car) -> CarSummary:
    return CarSummary(id=car.id, name=car.display_name, owner_id=car.owner_id)
