"""
Driver profile database model.

Chauffeur service offered alongside a rental.
"""

from sqlalchemy import Column, Integer, Boolean, DateTime, Numeric, ForeignKey
from sqlalchemy.sql import func
from backend.app.db.session import Base


class DriverProfile(Base):
    """Driver pricing profile, billed with the same hourly/daily tiering as cars."""
    __tablename__ = "driver_profiles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True, index=True)

    hourly_fee = Column(Numeric(12, 2), nullable=False)
    daily_fee = Column(Numeric(12, 2), nullable=False)
    daily_hour_threshold = Column(Integer, default=10, nullable=False)

    is_available_for_booking = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<DriverProfile(id={self.id}, daily_fee={self.daily_fee})>"
