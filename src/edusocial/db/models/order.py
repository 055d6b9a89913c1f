"""
Credit plan and credit order models
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
import enum
import uuid

from ..base import Base


class OrderStatus(str, enum.Enum):
    """Credit order status enum"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CreditPlan(Base):
    """A purchasable bundle of business credits"""
    __tablename__ = "credit_plans"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    credit_amount = Column(Integer, nullable=False)
    original_price = Column(Numeric(12, 2), nullable=False)
    discount_price = Column(Numeric(12, 2), nullable=True)
    is_discounted = Column(Boolean, default=False, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    billing_cycle = Column(String(20), default="one_time", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("credit_amount > 0", name="ck_credit_plans_credit_amount_positive"),
    )

    @property
    def effective_price(self) -> Decimal:
        if self.is_discounted and self.discount_price is not None:
            return Decimal(self.discount_price)
        return Decimal(self.original_price)

    def __repr__(self):
        return f"<CreditPlan(id={self.id}, name={self.name}, credits={self.credit_amount})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "credit_amount": self.credit_amount,
            "original_price": float(self.original_price),
            "discount_price": float(self.discount_price) if self.discount_price is not None else None,
            "is_discounted": self.is_discounted,
            "effective_price": float(self.effective_price),
            "currency": self.currency,
            "billing_cycle": self.billing_cycle,
            "is_active": self.is_active,
        }


class CreditOrder(Base):
    """
    A business account's purchase of a credit plan

    Status only moves forward from pending. Rows are never deleted; they are
    the audit trail for every purchase attempt.
    """
    __tablename__ = "credit_orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_account_id = Column(String(64), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("credit_plans.id"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)

    # Payment provider references
    payment_provider = Column(String(20), nullable=True)  # stripe
    payment_reference = Column(String(255), nullable=True, index=True)  # checkout session or payment intent id
    payment_currency = Column(String(3), nullable=True)  # currency actually charged after mapping
    paid_at = Column(DateTime, nullable=True)
    failure_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    plan = relationship("CreditPlan")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_credit_orders_quantity_positive"),
        CheckConstraint("total_price > 0", name="ck_credit_orders_total_price_positive"),
        Index("idx_credit_orders_account_created", "business_account_id", "created_at"),
    )

    def __repr__(self):
        return f"<CreditOrder(id={self.id}, status={self.status}, total={self.total_price} {self.currency})>"

    @property
    def is_paid(self) -> bool:
        return self.status == OrderStatus.PAID.value

    def to_dict(self) -> dict:
        """Convert order to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "business_account_id": self.business_account_id,
            "plan_id": self.plan_id,
            "quantity": self.quantity,
            "total_price": float(self.total_price),
            "currency": self.currency,
            "status": self.status,
            "payment_provider": self.payment_provider,
            "payment_reference": self.payment_reference,
            "payment_currency": self.payment_currency,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
