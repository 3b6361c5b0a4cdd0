"""
Pricing Schemas.

The breakdown is a set of typed blocks composed into one Breakdown model,
so every field is known up front and survives a JSON round trip.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from backend.app.core.timeutils import ensure_utc
from backend.app.models.billing_enums import DiscountType

ZERO = Decimal("0.00")


class DriverErrorKind(str, enum.Enum):
    DRIVER_NOT_SELECTED = "DriverNotSelected"
    DRIVER_NOT_FOUND = "DriverNotFound"
    DRIVER_UNAVAILABLE = "DriverUnavailable"


class DeliveryErrorKind(str, enum.Enum):
    DELIVERY_NOT_OFFERED = "DeliveryNotOffered"
    DELIVERY_RATE_MISSING = "DeliveryRateMissing"
    DELIVERY_ADDRESS_MISSING = "DeliveryAddressMissing"
    DISTANCE_EXCEEDED = "DistanceExceeded"
    DISTANCE_UNAVAILABLE = "DistanceUnavailable"


class PromotionErrorKind(str, enum.Enum):
    CODE_NOT_FOUND = "CodeNotFound"
    NOT_ACTIVE = "NotActive"
    OUT_OF_WINDOW = "OutOfWindow"
    BELOW_MINIMUM_AMOUNT = "BelowMinimumAmount"
    BELOW_MINIMUM_DURATION = "BelowMinimumDuration"
    GLOBAL_LIMIT_REACHED = "GlobalLimitReached"
    PER_USER_LIMIT_REACHED = "PerUserLimitReached"


class RentalBlock(BaseModel):
    """Car rental charge after hourly/daily tiering."""
    total_hours: int
    total_days: int
    remaining_hours: int
    hourly_rate: Decimal
    daily_rate: Decimal
    daily_hour_threshold: int
    base_amount: Decimal


class DriverBlock(BaseModel):
    """Chauffeur fee; all zero when no driver was requested or it could not be priced."""
    requested: bool = False
    driver_profile_id: Optional[int] = None
    total_driver_hours: int = 0
    driver_days: int = 0
    driver_remaining_hours: int = 0
    hourly_fee: Optional[Decimal] = None
    daily_fee: Optional[Decimal] = None
    daily_hour_threshold: Optional[int] = None
    fee_amount: Decimal = ZERO
    error_kind: Optional[DriverErrorKind] = None
    error_message: Optional[str] = None


class DeliveryBlock(BaseModel):
    """Delivery eligibility and distance-based fee."""
    requested: bool = False
    allowed: bool = False
    fee: Decimal = ZERO
    distance_km: Optional[Decimal] = None
    fee_per_km: Optional[Decimal] = None
    error_kind: Optional[DeliveryErrorKind] = None
    error_message: Optional[str] = None


class PromotionSnapshot(BaseModel):
    """Promotion terms frozen at application time."""
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    max_discount: Optional[Decimal] = None
    min_amount: Decimal = ZERO
    min_rental_hours: int = 0


class DiscountBlock(BaseModel):
    """Result of promotion validation against the base rental amount."""
    valid: bool = False
    promotion_id: Optional[int] = None
    promotion_code: Optional[str] = None
    discount_amount: Decimal = ZERO
    snapshot: Optional[PromotionSnapshot] = None
    error_kind: Optional[PromotionErrorKind] = None
    error_message: Optional[str] = None


class CarSummary(BaseModel):
    id: int
    name: str
    owner_id: int


class Breakdown(BaseModel):
    """Full financial result of a checkout request, before persistence."""
    car: CarSummary
    pickup_datetime: datetime
    return_datetime: datetime
    pickup_location_id: Optional[int] = None

    rental: RentalBlock
    driver: DriverBlock
    delivery: DeliveryBlock
    discount: DiscountBlock

    insurance_fee: Decimal = ZERO
    extra_fee: Decimal = ZERO

    subtotal: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    overtime_fee_per_hour: Decimal = ZERO
    deposit_amount: Decimal
    amount_paid: Decimal = ZERO
    balance_due: Decimal

    calculated_at: datetime


class QuoteRequest(BaseModel):
    """Checkout request priced by the breakdown assembler."""
    car_id: int = Field(..., gt=0)
    pickup_datetime: datetime
    return_datetime: datetime
    pickup_location_id: Optional[int] = None

    with_driver: bool = False
    driver_profile_id: Optional[int] = None

    is_delivery: bool = False
    delivery_address: Optional[str] = Field(None, max_length=500)

    promotion_code: Optional[str] = None
    user_id: Optional[int] = None

    insurance_fee: Decimal = Field(ZERO, ge=0)
    extra_fee: Decimal = Field(ZERO, ge=0)
    apply_vat: bool = True

    @field_validator("pickup_datetime", "return_datetime")
    @classmethod
    def normalize_to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("promotion_code")
    @classmethod
    def blank_code_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def check_rental_window(self):
        if self.return_datetime <= self.pickup_datetime:
            raise ValueError("return_datetime must be after pickup_datetime")
        return self
