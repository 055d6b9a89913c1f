"""
Invoice service for issuing invoices on paid credit orders
"""
from typing import Optional, List
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import desc
import logging

from ..db.models.invoice import Invoice, InvoiceStatus, BusinessProfile
from ..db.models.order import CreditOrder, OrderStatus
from ..exceptions import NotFound, InvalidState

logger = logging.getLogger(__name__)


def build_invoice_number(order_id: str, paid_at: datetime) -> str:
    """
    Invoice number derived only from the order, so a retry yields the same number

    Format: INV-<paid at, yyyymmddHHMMSS>-<last 8 characters of the order id>
    """
    suffix = order_id.replace("-", "")[-8:].upper()
    return f"INV-{paid_at.strftime('%Y%m%d%H%M%S')}-{suffix}"


class InvoiceService:
    """Service for generating and reading invoices"""

    def __init__(self, db: Session, base_url: Optional[str] = None, default_business_name: Optional[str] = None):
        """Initialize invoice service"""
        from ..config import config

        self.db = db
        self.base_url = (base_url or config.INVOICE_BASE_URL).rstrip("/")
        self.default_business_name = default_business_name or config.INVOICE_DEFAULT_BUSINESS_NAME

    def generate_invoice(self, order_id: str) -> Invoice:
        """
        Issue the invoice for a paid order, or return the one already issued

        Args:
            order_id: Credit order ID

        Returns:
            The order's invoice

        Raises:
            NotFound: order does not exist
            InvalidState: order is not paid
        """
        order = self.db.query(CreditOrder).filter(CreditOrder.id == order_id).first()
        if not order:
            raise NotFound(f"Order {order_id} not found", {"order_id": order_id})

        if order.status != OrderStatus.PAID.value:
            raise InvalidState(
                f"Cannot invoice order {order_id} in status {order.status}",
                {"order_id": order_id, "status": order.status},
            )

        existing = self.get_invoice_for_order(order_id)
        if existing:
            return existing

        paid_at = order.paid_at or order.updated_at
        invoice_number = build_invoice_number(order.id, paid_at)
        profile = self.db.query(BusinessProfile).filter(
            BusinessProfile.business_account_id == order.business_account_id
        ).first()

        invoice = Invoice(
            invoice_number=invoice_number,
            order_id=order.id,
            business_account_id=order.business_account_id,
            amount=order.total_price,
            currency=order.currency,
            status=InvoiceStatus.PAID.value,
            business_name=(profile.company_name if profile and profile.company_name else self.default_business_name),
            business_tax_id=profile.tax_id if profile else None,
            billing_address=profile.company_address if profile else None,
            document_url=f"{self.base_url}/{invoice_number}",
            issued_at=paid_at,
        )

        try:
            with self.db.begin_nested():
                self.db.add(invoice)
                self.db.flush()
        except IntegrityError:
            # Another worker issued it first (unique order_id / invoice_number)
            logger.info(f"Invoice for order {order_id} created concurrently, returning existing")
            existing = self.get_invoice_for_order(order_id)
            if existing is None:
                raise
            return existing

        self.db.commit()
        self.db.refresh(invoice)

        logger.info(f"Issued invoice {invoice.invoice_number} for order {order_id}")
        return invoice

    def get_invoice_for_order(self, order_id: str) -> Optional[Invoice]:
        return self.db.query(Invoice).filter(Invoice.order_id == order_id).first()

    def get_invoice_by_number(self, invoice_number: str) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.invoice_number == invoice_number).first()
        if not invoice:
            raise NotFound(f"Invoice {invoice_number} not found", {"invoice_number": invoice_number})
        return invoice

    def list_invoices(self, business_account_id: str, limit: int = 50, offset: int = 0) -> List[Invoice]:
        return self.db.query(Invoice).filter(
            Invoice.business_account_id == business_account_id
        ).order_by(desc(Invoice.issued_at)).offset(offset).limit(limit).all()
