"""
Booking charge database model.

The financial ledger of a booking.
"""

from sqlalchemy import Column, Integer, DateTime, Numeric, ForeignKey, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class BookingCharge(Base):
    """
    Booking charge model (1:1 with Booking).

    Invariant after every mutation:
        balance_due == total_amount - amount_paid - deposit_amount
    amount_paid only moves on gateway-confirmed captures and refunds.
    """
    __tablename__ = "booking_charges"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, unique=True, index=True)

    # Duration
    total_hours = Column(Integer, default=0, nullable=False)
    total_days = Column(Integer, default=0, nullable=False)

    # Rate snapshot
    hourly_rate = Column(Numeric(12, 2), nullable=True)
    daily_rate = Column(Numeric(12, 2), nullable=True)

    # Components
    base_amount = Column(Numeric(12, 2), nullable=False)
    delivery_fee = Column(Numeric(12, 2), default=0, nullable=False)
    driver_fee_amount = Column(Numeric(12, 2), default=0, nullable=False)
    insurance_fee = Column(Numeric(12, 2), default=0, nullable=False)
    extra_fee = Column(Numeric(12, 2), default=0, nullable=False)
    extra_fee_details = Column(JSON, nullable=True)  # [{"kind", "amount", "reason", "added_at"}]
    discount_amount = Column(Numeric(12, 2), default=0, nullable=False)

    # Totals
    subtotal = Column(Numeric(12, 2), nullable=False)
    vat_rate = Column(Numeric(5, 4), default=0, nullable=False)
    vat_amount = Column(Numeric(12, 2), default=0, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)

    # Settlement
    deposit_amount = Column(Numeric(12, 2), default=0, nullable=False)
    amount_paid = Column(Numeric(12, 2), default=0, nullable=False)
    balance_due = Column(Numeric(12, 2), default=0, nullable=False)
    refund_amount = Column(Numeric(12, 2), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<BookingCharge(id={self.id}, booking_id={self.booking_id}, total={self.total_amount}, due={self.balance_due})>"
