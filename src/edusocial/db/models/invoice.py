"""
Invoice and business profile models
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from ..base import Base


class InvoiceStatus(str, enum.Enum):
    """Invoice status enum"""
    PAID = "paid"


class Invoice(Base):
    """
    Invoice for a paid credit order

    Exactly one per order (unique order_id). Written once, never updated.
    """
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(50), unique=True, nullable=False, index=True)  # INV-20260114093000-1A2B3C4D
    order_id = Column(String(36), ForeignKey("credit_orders.id"), unique=True, nullable=False, index=True)
    business_account_id = Column(String(64), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(20), default=InvoiceStatus.PAID.value, nullable=False)

    # Business identity snapshot at time of issue
    business_name = Column(String(200), nullable=False)
    business_tax_id = Column(String(50), nullable=True)
    billing_address = Column(String(500), nullable=True)

    document_url = Column(String(500), nullable=True)
    issued_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    order = relationship("CreditOrder")

    __table_args__ = (
        Index("idx_invoices_account_issued", "business_account_id", "issued_at"),
    )

    def __repr__(self):
        return f"<Invoice(id={self.id}, number={self.invoice_number}, amount={self.amount})>"

    def to_dict(self) -> dict:
        """Convert invoice to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "business_account_id": self.business_account_id,
            "amount": float(self.amount),
            "currency": self.currency,
            "status": self.status,
            "business_name": self.business_name,
            "business_tax_id": self.business_tax_id,
            "billing_address": self.billing_address,
            "document_url": self.document_url,
            "issued_at": self.issued_at.isoformat(),
        }


class BusinessProfile(Base):
    """Company details used on invoices"""
    __tablename__ = "business_profiles"

    id = Column(Integer, primary_key=True, index=True)
    business_account_id = Column(String(64), nullable=False, unique=True, index=True)
    company_name = Column(String(200), nullable=True)
    company_address = Column(String(500), nullable=True)
    tax_id = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<BusinessProfile(account={self.business_account_id}, company={self.company_name})>"
