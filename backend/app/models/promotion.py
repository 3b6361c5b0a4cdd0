"""
Promotion database model.

Discount codes applied at checkout against the base rental amount.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Numeric, Enum, ForeignKey
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.billing_enums import DiscountType, PromotionStatus


class Promotion(Base):
    """
    Promotion model.

    Usable only while ACTIVE, inside [start_date, end_date], and under both the
    global (`max_uses`) and per-user (`max_uses_per_user`) caps.
    """
    __tablename__ = "promotions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    code = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    discount_type = Column(Enum(DiscountType), nullable=False)
    discount_value = Column(Numeric(12, 2), nullable=False)
    max_discount = Column(Numeric(12, 2), nullable=True)  # Cap, percentage only
    min_amount = Column(Numeric(12, 2), default=0, nullable=False)
    min_rental_hours = Column(Integer, default=0, nullable=False)

    max_uses = Column(Integer, nullable=True)  # NULL = unlimited
    max_uses_per_user = Column(Integer, default=1, nullable=False)
    used_count = Column(Integer, default=0, nullable=False)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(Enum(PromotionStatus), default=PromotionStatus.ACTIVE, nullable=False, index=True)

    created_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Promotion(id={self.id}, code='{self.code}', status='{self.status.value}')>"
