"""
Booking promotion database model.

Snapshot of the promotion terms as they were when applied.
"""

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class BookingPromotion(Base):
    """
    Applied promotion (0:1 per booking).

    `promotion_details` is frozen at application time; editing the promotion
    afterwards never changes historical bookings.
    """
    __tablename__ = "booking_promotions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey('bookings.id'), nullable=False, unique=True, index=True)
    promotion_id = Column(Integer, ForeignKey('promotions.id'), nullable=False, index=True)
    applied_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    promotion_code = Column(String(20), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False)
    promotion_details = Column(JSON, nullable=True)

    applied_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<BookingPromotion(booking_id={self.booking_id}, code='{self.promotion_code}', discount={self.discount_amount})>"
