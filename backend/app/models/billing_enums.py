"""
Booking and settlement enumerations.
"""

import enum


class BookingStatus(str, enum.Enum):
    """Booking lifecycle status."""
    PENDING = "pending"  # Created at checkout, awaiting payment or admin confirmation
    CONFIRMED = "confirmed"  # Paid (deposit or full) or confirmed by admin
    ACTIVE = "active"  # Car picked up
    COMPLETED = "completed"  # Car returned, final charges applied
    CANCELLED = "cancelled"  # Cancelled by customer or admin
    REJECTED = "rejected"  # Rejected by admin


class BookingPaymentStatus(str, enum.Enum):
    """Summary payment state shown on the booking."""
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    """Gateway transaction attempt status."""
    PENDING = "pending"  # Order created, waiting for payer approval + capture
    COMPLETED = "completed"  # Captured by the gateway
    FAILED = "failed"  # Capture declined
    REFUNDED = "refunded"  # Captured, then refunded
    CANCELLED = "cancelled"  # Payer abandoned the order


class PaymentType(str, enum.Enum):
    """What a payment is meant to cover."""
    DEPOSIT = "deposit"
    FULL_PAYMENT = "full_payment"
    PARTIAL = "partial"


class PaymentMethod(str, enum.Enum):
    """Supported payment methods."""
    PAYPAL = "paypal"


class DiscountType(str, enum.Enum):
    """Promotion discount type."""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class PromotionStatus(str, enum.Enum):
    """Promotion publication status."""
    ACTIVE = "active"
    PAUSED = "paused"
    UPCOMING = "upcoming"
    ARCHIVED = "archived"
