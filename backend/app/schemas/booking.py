"""
Booking Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Any, Dict
from backend.app.models.billing_enums import BookingStatus, BookingPaymentStatus
from backend.app.schemas.pricing import QuoteRequest, Breakdown
from backend.app.schemas.payment import PaymentResponse


class BookingCreate(QuoteRequest):
    """Checkout request confirmed by the customer."""
    return_location_id: Optional[int] = None
    special_requests: Optional[str] = Field(None, max_length=500)


class CancelBookingRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RejectBookingRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class StartBookingRequest(BaseModel):
    actual_pickup_time: Optional[datetime] = None


class CompleteBookingRequest(BaseModel):
    actual_return_time: Optional[datetime] = None
    extra_fee: Optional[Decimal] = Field(None, ge=0, description="Damage, cleaning or other admin charge")
    extra_fee_reason: Optional[str] = Field(None, max_length=500)


class BookingChargeResponse(BaseModel):
    """Schema for displaying the charge ledger."""
    total_hours: int
    total_days: int
    base_amount: Decimal
    delivery_fee: Decimal
    driver_fee_amount: Decimal
    insurance_fee: Decimal
    extra_fee: Decimal
    extra_fee_details: Optional[List[Dict[str, Any]]]
    discount_amount: Decimal
    subtotal: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    deposit_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    refund_amount: Decimal

    class Config:
        from_attributes = True


class BookingPromotionResponse(BaseModel):
    promotion_code: str
    discount_amount: Decimal
    promotion_details: Optional[Dict[str, Any]]
    applied_at: datetime

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    """Schema for displaying a booking."""
    id: int
    booking_code: str
    user_id: int
    owner_id: int
    car_id: int
    pickup_location_id: int
    return_location_id: int
    pickup_datetime: datetime
    return_datetime: datetime
    actual_pickup_time: Optional[datetime]
    actual_return_time: Optional[datetime]
    with_driver: bool
    driver_profile_id: Optional[int]
    is_delivery: bool
    delivery_address: Optional[str]
    delivery_distance_km: Optional[Decimal]
    status: BookingStatus
    payment_status: BookingPaymentStatus
    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    special_requests: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class BookingDetailResponse(BaseModel):
    booking: BookingResponse
    charge: BookingChargeResponse
    promotion: Optional[BookingPromotionResponse] = None
    payments: List[PaymentResponse] = []


class BookingCreatedResponse(BaseModel):
    booking: BookingResponse
    charge: BookingChargeResponse
    breakdown: Breakdown


class CancellationResponse(BaseModel):
    booking_id: int
    status: BookingStatus
    free_cancellation: bool
    hours_before_pickup: Decimal
    cancelled_at: datetime


class CompletionResponse(BaseModel):
    booking_id: int
    status: BookingStatus
    late_hours: int
    overtime_fee: Decimal
    extra_fee: Decimal
    charge: BookingChargeResponse
