"""
Tests for the order store and its status lifecycle
"""
import pytest
from decimal import Decimal

from edusocial.db.models import CreditOrder, OrderStatus
from edusocial.exceptions import ValidationError, NotFound, InvalidTransition
from edusocial.services.order_store import OrderStore, is_transition_allowed

from conftest import BUSINESS_ID


@pytest.fixture
def store(db_session):
    return OrderStore(db_session)


@pytest.fixture
def pending_order(store, credit_plan):
    return store.create_order(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "USD")


class TestTransitionTable:
    """Test the allowed status transitions"""

    @pytest.mark.parametrize("target", ["paid", "failed", "cancelled"])
    def test_pending_can_close(self, target):
        """Pending orders may move to any terminal status"""
        assert is_transition_allowed("pending", target)

    @pytest.mark.parametrize("current", ["paid", "failed", "cancelled"])
    def test_terminal_statuses_are_final(self, current):
        """Nothing leaves a terminal status"""
        for target in ("pending", "paid", "failed", "cancelled"):
            assert not is_transition_allowed(current, target)

    def test_unknown_status_never_allowed(self):
        """Unknown statuses are rejected rather than raising"""
        assert not is_transition_allowed("pending", "refunded")
        assert not is_transition_allowed("bogus", "paid")


class TestCreateOrder:
    """Test order creation"""

    def test_create_order_is_pending(self, store, credit_plan):
        """New orders start pending with a normalised currency"""
        order = store.create_order(BUSINESS_ID, credit_plan.id, 2, "98.5", " USD ")

        assert order.id
        assert order.status == OrderStatus.PENDING.value
        assert order.quantity == 2
        assert order.total_price == Decimal("98.50")
        assert order.currency == "usd"
        assert order.paid_at is None

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
    def test_invalid_quantity(self, store, credit_plan, quantity):
        """Quantity must be a positive integer"""
        with pytest.raises(ValidationError):
            store.create_order(BUSINESS_ID, credit_plan.id, quantity, Decimal("10"), "usd")

    @pytest.mark.parametrize("price", [0, "-5", "abc", "NaN"])
    def test_invalid_total_price(self, store, credit_plan, price):
        """Total price must be a positive number"""
        with pytest.raises(ValidationError):
            store.create_order(BUSINESS_ID, credit_plan.id, 1, price, "usd")

    def test_missing_currency(self, store, credit_plan):
        with pytest.raises(ValidationError):
            store.create_order(BUSINESS_ID, credit_plan.id, 1, Decimal("10"), "")

    def test_rejected_order_is_not_persisted(self, store, credit_plan, db_session):
        """Validation happens before anything is written"""
        with pytest.raises(ValidationError):
            store.create_order(BUSINESS_ID, credit_plan.id, 0, Decimal("10"), "usd")
        assert db_session.query(CreditOrder).count() == 0


class TestTransitionOrder:
    """Test status transitions"""

    def test_pending_to_paid(self, store, pending_order):
        """Paying an order stamps paid_at and the payment details"""
        order = store.transition_order(
            pending_order.id,
            "paid",
            {"payment_reference": "pi_123", "provider": "stripe"},
        )

        assert order.status == "paid"
        assert order.paid_at is not None
        assert order.payment_reference == "pi_123"
        assert order.payment_provider == "stripe"

    def test_failed_records_reason(self, store, pending_order):
        order = store.transition_order(pending_order.id, "failed", {"failure_reason": "card_declined"})

        assert order.status == "failed"
        assert order.failure_reason == "card_declined"
        assert order.paid_at is None

    def test_paid_order_cannot_fail(self, store, pending_order):
        """A paid order never moves back or sideways"""
        store.transition_order(pending_order.id, "paid")

        with pytest.raises(InvalidTransition):
            store.transition_order(pending_order.id, "failed")

        assert store.get_order(pending_order.id).status == "paid"

    def test_cancelled_order_cannot_be_paid(self, store, pending_order):
        store.transition_order(pending_order.id, "cancelled")

        with pytest.raises(InvalidTransition) as exc_info:
            store.transition_order(pending_order.id, "paid")

        assert exc_info.value.details["from"] == "cancelled"

    def test_unknown_target_status(self, store, pending_order):
        with pytest.raises(ValidationError):
            store.transition_order(pending_order.id, "refunded")

    def test_unknown_order(self, store):
        with pytest.raises(NotFound):
            store.transition_order("missing-order", "paid")

    def test_paid_listeners_run_once(self, store, pending_order):
        """Listeners fire on the transition to paid and not on other transitions"""
        seen = []
        store.on_paid(lambda order: seen.append(order.id))

        store.transition_order(pending_order.id, "paid")
        with pytest.raises(InvalidTransition):
            store.transition_order(pending_order.id, "paid")

        assert seen == [pending_order.id]

    def test_concurrent_writer_loses(self, store, pending_order, session_factory, db_session):
        """The conditional update refuses a transition when the row changed underneath"""
        # Read the id before committing; touching an expired attribute would reopen a transaction
        order_id = pending_order.id
        db_session.commit()
        stale = OrderStore(session_factory(expire_on_commit=False))
        # Load the order while it is still pending and keep that snapshot
        stale.get_order(order_id)
        stale.db.commit()

        store.transition_order(order_id, "cancelled")
        db_session.commit()

        with pytest.raises(InvalidTransition) as exc_info:
            stale.transition_order(order_id, "paid")

        assert exc_info.value.details["from"] == "cancelled"
        assert stale.get_order(order_id).status == "cancelled"

    def test_emit_paid_requires_paid_order(self, store, pending_order):
        with pytest.raises(InvalidTransition):
            store.emit_paid(pending_order)


class TestPaymentReference:
    """Test attaching provider references"""

    def test_attach_and_find(self, store, pending_order):
        store.attach_payment_reference(pending_order.id, "stripe", "cs_test_1", "usd")

        found = store.find_by_payment_reference("cs_test_1")
        assert found.id == pending_order.id
        assert found.payment_currency == "usd"

    def test_attach_to_closed_order(self, store, pending_order):
        store.transition_order(pending_order.id, "failed")

        with pytest.raises(InvalidTransition):
            store.attach_payment_reference(pending_order.id, "stripe", "cs_test_2")

    def test_find_without_reference(self, store):
        assert store.find_by_payment_reference("") is None


class TestQueries:
    """Test listing and plan lookup"""

    def test_list_orders_by_account_and_status(self, store, credit_plan):
        first = store.create_order(BUSINESS_ID, credit_plan.id, 1, Decimal("10"), "usd")
        store.create_order(BUSINESS_ID, credit_plan.id, 1, Decimal("10"), "usd")
        store.create_order("biz-other", credit_plan.id, 1, Decimal("10"), "usd")
        store.transition_order(first.id, "paid")

        assert len(store.list_orders(BUSINESS_ID)) == 2
        paid = store.list_orders(BUSINESS_ID, status="paid")
        assert [o.id for o in paid] == [first.id]

    def test_get_plan_not_found(self, store):
        with pytest.raises(NotFound):
            store.get_plan("no-such-plan")

    def test_list_active_plans(self, store, credit_plan, db_session):
        credit_plan.is_active = False
        db_session.commit()

        assert store.list_active_plans() == []
