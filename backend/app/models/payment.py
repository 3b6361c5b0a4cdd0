"""
Payment database model.

One row per gateway transaction attempt.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Numeric, Enum, ForeignKey, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import PaymentStatus, PaymentType, PaymentMethod


class Payment(Base):
    """
    Payment model.

    Amounts are kept in both currencies with the rate captured at creation.
    Valid transitions: pending -> completed | failed | cancelled,
    completed -> refunded. Nothing else.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    transaction_id = Column(String(100), unique=True, nullable=False)

    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.PAYPAL, nullable=False)
    payment_type = Column(Enum(PaymentType), nullable=False)

    # Dual currency
    local_currency = Column(String(3), nullable=False)
    currency = Column(String(3), nullable=False)  # Gateway settlement currency
    amount_local = Column(Numeric(14, 2), nullable=False)
    amount_foreign = Column(Numeric(14, 2), nullable=False)
    exchange_rate = Column(Numeric(14, 4), nullable=False)

    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False, index=True)

    # Gateway correlation
    gateway_order_id = Column(String(100), unique=True, nullable=False, index=True)
    gateway_payer_id = Column(String(100), nullable=True)
    gateway_payer_email = Column(String(150), nullable=True)
    gateway_response = Column(JSON, nullable=True)

    notes = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, order='{self.gateway_order_id}', status='{self.status.value}')>"
