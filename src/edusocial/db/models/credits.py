"""
Business credit balance and credit transaction log
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, UniqueConstraint, CheckConstraint
from datetime import datetime
import enum

from ..base import Base


class CreditTransactionType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class BusinessCredit(Base):
    """Running credit balance for one business account"""
    __tablename__ = "business_credits"

    id = Column(Integer, primary_key=True, index=True)
    business_account_id = Column(String(64), nullable=False, unique=True, index=True)
    total_credits = Column(Integer, default=0, nullable=False)
    used_credits = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("used_credits >= 0", name="ck_business_credits_used_non_negative"),
        CheckConstraint("used_credits <= total_credits", name="ck_business_credits_used_within_total"),
    )

    @property
    def available_credits(self) -> int:
        return self.total_credits - self.used_credits

    def __repr__(self):
        return f"<BusinessCredit(account={self.business_account_id}, total={self.total_credits}, used={self.used_credits})>"

    def to_dict(self) -> dict:
        return {
            "business_account_id": self.business_account_id,
            "total_credits": self.total_credits,
            "used_credits": self.used_credits,
            "available_credits": self.available_credits,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CreditTransaction(Base):
    """
    Append-only log row, one per ledger mutation

    balance_after is the available balance (total - used) right after the
    mutation, so summing credit_change over an account reproduces it.
    """
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    business_account_id = Column(String(64), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("credit_orders.id"), nullable=True, index=True)
    type = Column(String(10), nullable=False)
    credit_change = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        # One credit per order is the ledger's idempotency key
        UniqueConstraint("order_id", "type", name="uq_credit_transactions_order_type"),
        Index("idx_credit_transactions_account_created", "business_account_id", "created_at"),
    )

    def __repr__(self):
        return f"<CreditTransaction(id={self.id}, type={self.type}, change={self.credit_change})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_account_id": self.business_account_id,
            "order_id": self.order_id,
            "type": self.type,
            "credit_change": self.credit_change,
            "balance_after": self.balance_after,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
