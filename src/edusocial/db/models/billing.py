"""
Billing event model
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from datetime import datetime

from ..base import Base, JSONType


class BillingEvent(Base):
    """Provider webhook event, kept for audit and replay detection"""
    __tablename__ = "billing_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(20), nullable=False, index=True)  # 'stripe'
    event_type = Column(String(100), nullable=False, index=True)
    provider_event_id = Column(String(255), nullable=False, index=True)
    order_id = Column(String(36), nullable=True, index=True)
    payload_json = Column(JSONType, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("provider", "provider_event_id", name="uq_billing_events_provider_event_id"),
    )

    def __repr__(self):
        return f"<BillingEvent(id={self.id}, type={self.event_type}, provider_event_id={self.provider_event_id})>"
