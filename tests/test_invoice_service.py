"""
Tests for invoice service
"""
import pytest
from datetime import datetime
from decimal import Decimal

from edusocial.db.models import Invoice, BusinessProfile
from edusocial.exceptions import NotFound, InvalidState
from edusocial.services.invoice_service import InvoiceService, build_invoice_number
from edusocial.services.order_store import OrderStore

from conftest import BUSINESS_ID


@pytest.fixture
def invoice_service(db_session):
    return InvoiceService(
        db_session,
        base_url="https://billing.example.com/invoices/",
        default_business_name="EduSocial Business",
    )


@pytest.fixture
def paid_order(db_session, credit_plan):
    store = OrderStore(db_session)
    order = store.create_order(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "usd")
    return store.transition_order(order.id, "paid", {"paid_at": datetime(2026, 3, 14, 9, 30, 0)})


class TestInvoiceNumber:
    """Test invoice number format"""

    def test_number_from_paid_time_and_order_id(self):
        number = build_invoice_number("3f2b9c1e-aaaa-bbbb-cccc-0123456789ab", datetime(2026, 3, 14, 9, 30, 5))

        assert number == "INV-20260314093005-456789AB"

    def test_same_inputs_same_number(self):
        """Retries reproduce the same number"""
        paid_at = datetime(2026, 1, 1)
        assert build_invoice_number("order-1", paid_at) == build_invoice_number("order-1", paid_at)


class TestGenerateInvoice:
    """Test invoice generation"""

    def test_generate_for_paid_order(self, invoice_service, paid_order):
        invoice = invoice_service.generate_invoice(paid_order.id)

        assert invoice.order_id == paid_order.id
        assert invoice.business_account_id == BUSINESS_ID
        assert invoice.amount == Decimal("49.00")
        assert invoice.currency == "usd"
        assert invoice.status == "paid"
        assert invoice.issued_at == datetime(2026, 3, 14, 9, 30, 0)
        assert invoice.invoice_number.startswith("INV-20260314093000-")
        assert invoice.document_url == f"https://billing.example.com/invoices/{invoice.invoice_number}"

    def test_default_business_name_without_profile(self, invoice_service, paid_order):
        invoice = invoice_service.generate_invoice(paid_order.id)

        assert invoice.business_name == "EduSocial Business"
        assert invoice.business_tax_id is None

    def test_uses_business_profile(self, invoice_service, paid_order, db_session):
        """Company details come from the business profile when one exists"""
        db_session.add(BusinessProfile(
            business_account_id=BUSINESS_ID,
            company_name="Bright Tutors Sdn Bhd",
            company_address="1 Jalan Ampang, Kuala Lumpur",
            tax_id="MY-123456",
        ))
        db_session.commit()

        invoice = invoice_service.generate_invoice(paid_order.id)

        assert invoice.business_name == "Bright Tutors Sdn Bhd"
        assert invoice.business_tax_id == "MY-123456"
        assert invoice.billing_address == "1 Jalan Ampang, Kuala Lumpur"

    def test_generate_twice_returns_same_invoice(self, invoice_service, paid_order, db_session):
        """One invoice per order, however often generation runs"""
        first = invoice_service.generate_invoice(paid_order.id)
        second = invoice_service.generate_invoice(paid_order.id)

        assert first.id == second.id
        assert db_session.query(Invoice).count() == 1

    def test_unpaid_order_rejected(self, invoice_service, db_session, credit_plan):
        order = OrderStore(db_session).create_order(BUSINESS_ID, credit_plan.id, 1, Decimal("10"), "usd")

        with pytest.raises(InvalidState):
            invoice_service.generate_invoice(order.id)

        assert db_session.query(Invoice).count() == 0

    def test_unknown_order(self, invoice_service):
        with pytest.raises(NotFound):
            invoice_service.generate_invoice("missing")


class TestInvoiceQueries:
    """Test invoice lookups"""

    def test_lookup_by_number(self, invoice_service, paid_order):
        invoice = invoice_service.generate_invoice(paid_order.id)

        assert invoice_service.get_invoice_by_number(invoice.invoice_number).id == invoice.id

    def test_unknown_number(self, invoice_service):
        with pytest.raises(NotFound):
            invoice_service.get_invoice_by_number("INV-0-NOPE")

    def test_no_invoice_before_payment(self, invoice_service, paid_order):
        assert invoice_service.get_invoice_for_order(paid_order.id) is None

    def test_list_invoices_for_account(self, invoice_service, paid_order):
        invoice_service.generate_invoice(paid_order.id)

        assert len(invoice_service.list_invoices(BUSINESS_ID)) == 1
        assert invoice_service.list_invoices("biz-other") == []
