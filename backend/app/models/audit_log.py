"""
Audit Log Database Model.

Tracks booking transitions and settlement events for reconciliation.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Written in the same transaction as the mutation it describes, so a
    rolled-back settlement leaves no audit trace either.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for gateway callbacks / system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    # What was acted upon
    booking_id = Column(Integer, index=True, nullable=True)
    payment_id = Column(Integer, index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', booking={self.booking_id}, payment={self.payment_id})>"
