"""
Booking database model.

A booking carries a snapshot of every rate it was priced with, so later
catalog edits never change what the customer agreed to pay.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Numeric, Enum, ForeignKey
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import BookingStatus, BookingPaymentStatus, PaymentMethod


class Booking(Base):
    """
    Booking model.

    Lifecycle: pending -> confirmed -> active -> completed, with
    cancelled / rejected as alternative terminal states.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_code = Column(String(20), unique=True, index=True, nullable=False)

    # Parties
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)  # Customer
    owner_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)  # Car owner
    car_id = Column(Integer, ForeignKey('cars.id'), nullable=False, index=True)
    confirmed_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    cancelled_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    # Locations
    pickup_location_id = Column(Integer, ForeignKey('locations.id'), nullable=False)
    return_location_id = Column(Integer, ForeignKey('locations.id'), nullable=False)

    # Rental window
    pickup_datetime = Column(DateTime(timezone=True), nullable=False)
    return_datetime = Column(DateTime(timezone=True), nullable=False)
    actual_pickup_time = Column(DateTime(timezone=True), nullable=True)
    actual_return_time = Column(DateTime(timezone=True), nullable=True)

    # Car pricing snapshot
    hourly_rate = Column(Numeric(12, 2), nullable=False)
    daily_rate = Column(Numeric(12, 2), nullable=False)
    daily_hour_threshold = Column(Integer, default=10, nullable=False)
    deposit_amount = Column(Numeric(12, 2), default=0, nullable=False)
    overtime_fee_per_hour = Column(Numeric(12, 2), default=0, nullable=False)

    # Driver snapshot
    with_driver = Column(Boolean, default=False, nullable=False)
    driver_profile_id = Column(Integer, ForeignKey('driver_profiles.id'), nullable=True, index=True)
    driver_hourly_fee = Column(Numeric(12, 2), nullable=True)
    driver_daily_fee = Column(Numeric(12, 2), nullable=True)
    driver_daily_hour_threshold = Column(Integer, nullable=True)
    total_driver_hours = Column(Integer, default=0, nullable=False)

    # Delivery snapshot
    is_delivery = Column(Boolean, default=False, nullable=False)
    delivery_address = Column(Text, nullable=True)
    delivery_distance_km = Column(Numeric(10, 2), nullable=True)
    delivery_fee_per_km = Column(Numeric(12, 2), nullable=True)

    # Status
    status = Column(Enum(BookingStatus), default=BookingStatus.PENDING, nullable=False, index=True)
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.PAYPAL, nullable=True)
    payment_status = Column(Enum(BookingPaymentStatus), default=BookingPaymentStatus.PENDING, nullable=False)

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    special_requests = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Booking(id={self.id}, code='{self.booking_code}', status='{self.status.value}')>"
