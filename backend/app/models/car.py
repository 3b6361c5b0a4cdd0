"""
Car database model.

Only the attributes the pricing core reads are modelled here; the rest of the
catalog (images, specs, categories) lives outside this service.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey
from sqlalchemy.sql import func
from backend.app.db.session import Base


class Car(Base):
    """
    Car model with its pricing profile.

    Rental is billed hourly until `daily_hour_threshold` hours, each full block
    of threshold hours is billed at the daily rate.
    """
    __tablename__ = "cars"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey('locations.id'), nullable=True, index=True)

    name = Column(String(255), nullable=True)
    model = Column(String(255), nullable=False)

    # Pricing profile
    hourly_rate = Column(Numeric(12, 2), nullable=False)
    daily_rate = Column(Numeric(12, 2), nullable=False)
    daily_hour_threshold = Column(Integer, default=10, nullable=False)
    deposit_amount = Column(Numeric(12, 2), default=0, nullable=False)
    min_rental_hours = Column(Integer, default=4, nullable=False)
    overtime_fee_per_hour = Column(Numeric(12, 2), default=0, nullable=False)

    # Delivery
    is_delivery_available = Column(Boolean, default=True, nullable=False)
    delivery_fee_per_km = Column(Numeric(12, 2), nullable=True)
    max_delivery_distance_km = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def display_name(self) -> str:
        return self.name or self.model

    def __repr__(self):
        return f"<Car(id={self.id}, model='{self.model}', daily_rate={self.daily_rate})>"
