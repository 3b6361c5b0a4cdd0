"""
Payment Schemas.

Settlement results are returned as data: a declined capture or an already
captured order is a CaptureResult, not an error.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from backend.app.models.billing_enums import PaymentStatus, PaymentType


class PaymentCreate(BaseModel):
    """Start a gateway payment for a booking."""
    payment_type: PaymentType = PaymentType.DEPOSIT
    amount: Optional[Decimal] = Field(None, gt=0, description="Booking-currency amount; required for partial")


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderHandle(BaseModel):
    """Gateway order the payer must approve."""
    payment_id: int
    order_id: str
    approval_url: Optional[str]
    status: PaymentStatus
    payment_type: PaymentType
    amount_local: Decimal
    local_currency: str
    amount_foreign: Decimal
    currency: str
    exchange_rate: Decimal


class CaptureResult(BaseModel):
    """Outcome of a capture callback."""
    success: bool
    payment_id: int
    order_id: str
    booking_id: int
    status: PaymentStatus
    already_captured: bool = False
    gateway_status: Optional[str] = None
    amount_local: Decimal
    payer_email: Optional[str] = None
    message: Optional[str] = None


class RefundResult(BaseModel):
    refund_id: str
    payment_id: int
    booking_id: int
    status: PaymentStatus
    gateway_status: str
    amount_local: Decimal
    amount_foreign: Decimal


class PaymentResponse(BaseModel):
    """Schema for displaying a payment."""
    id: int
    transaction_id: str
    booking_id: int
    payment_type: PaymentType
    status: PaymentStatus
    local_currency: str
    currency: str
    amount_local: Decimal
    amount_foreign: Decimal
    exchange_rate: Decimal
    gateway_order_id: str
    paid_at: Optional[datetime]
    refunded_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True
