"""
Tests for the checkout orchestration: order, payment, credits, invoice
"""
import json
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

from edusocial.db.models import CreditOrder, CreditPlan, CreditTransaction, Invoice, BillingEvent
from edusocial.exceptions import ValidationError, NotFound, Unauthorized, InfrastructureError
from edusocial.services.checkout_service import CheckoutService

from conftest import BUSINESS_ID, VALID_WEBHOOK_SIGNATURE, stripe_event


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def checkout(db_session, fake_gateway, sleep):
    return CheckoutService(db_session, fake_gateway, max_confirm_attempts=3, retry_delay=0.5, sleep=sleep)


@pytest.fixture
def started(checkout, credit_plan):
    """A checkout that has reached the payment provider"""
    return checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "usd")


def deliver(checkout, event, signature=VALID_WEBHOOK_SIGNATURE):
    return checkout.handle_webhook(json.dumps(event).encode(), signature)


class TestStartCheckout:
    """Test creating orders and payment sessions"""

    def test_creates_pending_order_with_session(self, checkout, started, fake_gateway, db_session):
        order = db_session.query(CreditOrder).one()

        assert started["order_id"] == order.id
        assert started["redirect_url"] == "https://pay.example.com/pi_test_1"
        assert order.status == "pending"
        assert order.payment_reference == "pi_test_1"
        assert order.payment_provider == "stripe"
        assert fake_gateway.sessions[0]["description"] == "EduSocial Credits - Starter"

    def test_no_credits_before_payment(self, checkout, started):
        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 0

    def test_unknown_plan(self, checkout):
        with pytest.raises(NotFound):
            checkout.start_checkout(BUSINESS_ID, "no-plan", 1, Decimal("10"), "usd")

    def test_inactive_plan(self, checkout, credit_plan, db_session):
        credit_plan.is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("10"), "usd")

    def test_rejected_currency_creates_no_order(self, checkout, credit_plan, fake_gateway, db_session):
        fake_gateway.currency_policy = "reject"
        credit_plan.currency = "xyz"
        db_session.commit()

        with pytest.raises(ValidationError):
            checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "XYZ")

        assert db_session.query(CreditOrder).count() == 0
        assert fake_gateway.sessions == []

    def test_fallback_currency(self, checkout, credit_plan, fake_gateway, db_session):
        credit_plan.currency = "xyz"
        db_session.commit()

        checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "XYZ")

        assert fake_gateway.sessions[0]["currency"] == "usd"

    def test_provider_down_leaves_pending_order(self, checkout, credit_plan, fake_gateway, db_session):
        """The order survives a failed session creation, with no payment reference"""
        fake_gateway.fail_sessions = True

        with pytest.raises(InfrastructureError):
            checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "usd")

        order = db_session.query(CreditOrder).one()
        assert order.status == "pending"
        assert order.payment_reference is None


class TestCheckoutPricing:
    """Test that the plan, not the client, decides what is charged"""

    def test_underpriced_total_is_rejected(self, checkout, credit_plan, fake_gateway, db_session):
        """Declaring one cent for a 49.00 plan creates no order and no payment session"""
        with pytest.raises(ValidationError) as exc_info:
            checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("0.01"), "usd")

        assert exc_info.value.details["expected"] == "49.00"
        assert db_session.query(CreditOrder).count() == 0
        assert fake_gateway.sessions == []

    def test_overpriced_total_is_rejected(self, checkout, credit_plan, db_session):
        with pytest.raises(ValidationError):
            checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("4900"), "usd")

        assert db_session.query(CreditOrder).count() == 0

    def test_other_currency_is_rejected(self, checkout, credit_plan, fake_gateway, db_session):
        """49 baht is not 49 dollars"""
        with pytest.raises(ValidationError):
            checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "thb")

        assert db_session.query(CreditOrder).count() == 0
        assert fake_gateway.sessions == []

    def test_total_scales_with_quantity(self, checkout, credit_plan, fake_gateway, db_session):
        checkout.start_checkout(BUSINESS_ID, credit_plan.id, 3, "147", "usd")

        order = db_session.query(CreditOrder).one()
        assert order.total_price == Decimal("147.00")
        assert fake_gateway.sessions[0]["amount"] == 14700

    def test_discounted_plan_charges_discount_price(self, checkout, credit_plan, db_session):
        credit_plan.discount_price = Decimal("39.00")
        credit_plan.is_discounted = True
        db_session.commit()

        with pytest.raises(ValidationError):
            checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "usd")

        checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("39.00"), "usd")

        assert db_session.query(CreditOrder).one().total_price == Decimal("39.00")

    def test_currency_alias_matches_plan(self, checkout, credit_plan, fake_gateway, db_session):
        """The RM alias is accepted for a ringgit plan; the order keeps the plan's code"""
        credit_plan.currency = "myr"
        db_session.commit()

        checkout.start_checkout(BUSINESS_ID, credit_plan.id, 1, Decimal("49.00"), "RM")

        assert db_session.query(CreditOrder).one().currency == "myr"
        assert fake_gateway.sessions[0]["currency"] == "myr"


class TestWebhook:
    """Test applying provider webhooks"""

    def test_payment_succeeded(self, checkout, started, db_session):
        """A successful payment pays the order, grants plan credits and issues one invoice"""
        order_id = started["order_id"]

        result = deliver(checkout, stripe_event("evt_1", "payment_intent.succeeded", order_id, "pi_test_1"))

        assert result == {"processed": True, "event_type": "payment_succeeded", "order_id": order_id, "order_status": "paid"}
        assert checkout.orders.get_order(order_id).status == "paid"
        balance = checkout.ledger.get_balance(BUSINESS_ID)
        assert balance.total_credits == 100
        assert balance.used_credits == 0
        invoice = db_session.query(Invoice).one()
        assert invoice.order_id == order_id
        assert invoice.amount == Decimal("49.00")

    def test_duplicate_delivery_credits_once(self, checkout, started, db_session):
        event = stripe_event("evt_1", "payment_intent.succeeded", started["order_id"], "pi_test_1")

        deliver(checkout, event)
        result = deliver(checkout, event)

        assert result["order_status"] == "paid"
        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 100
        assert db_session.query(CreditTransaction).count() == 1
        assert db_session.query(Invoice).count() == 1
        assert db_session.query(BillingEvent).count() == 1

    def test_distinct_events_for_same_payment(self, checkout, started, db_session):
        """Checkout and intent events for one payment still credit once"""
        order_id = started["order_id"]
        deliver(checkout, stripe_event("evt_1", "payment_intent.succeeded", order_id, "pi_test_1"))
        deliver(checkout, stripe_event("evt_2", "checkout.session.completed", order_id, "cs_test_1", payment_status="paid"))

        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 100
        assert db_session.query(BillingEvent).count() == 2

    def test_invalid_signature_changes_nothing(self, checkout, started, db_session):
        event = stripe_event("evt_1", "payment_intent.succeeded", started["order_id"], "pi_test_1")

        with pytest.raises(Unauthorized):
            deliver(checkout, event, signature="t=1,v1=forged")

        assert checkout.orders.get_order(started["order_id"]).status == "pending"
        assert db_session.query(BillingEvent).count() == 0

    def test_payment_failed(self, checkout, started):
        event = stripe_event(
            "evt_3", "payment_intent.payment_failed", started["order_id"], "pi_test_1",
            last_payment_error={"message": "Your card was declined."},
        )

        result = deliver(checkout, event)

        order = checkout.orders.get_order(started["order_id"])
        assert result["order_status"] == "failed"
        assert order.failure_reason == "Your card was declined."
        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 0

    def test_success_after_cancellation_is_not_applied(self, checkout, started):
        """A cancelled order is final; a late success is left for manual review"""
        order_id = started["order_id"]
        deliver(checkout, stripe_event("evt_4", "payment_intent.canceled", order_id, "pi_test_1"))

        result = deliver(checkout, stripe_event("evt_5", "payment_intent.succeeded", order_id, "pi_test_1"))

        assert result["processed"] is False
        assert result["reason"] == "invalid_state"
        assert checkout.orders.get_order(order_id).status == "cancelled"
        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 0

    def test_order_found_by_payment_reference(self, checkout, started):
        """Events without order metadata are matched on the provider reference"""
        result = deliver(checkout, stripe_event("evt_6", "payment_intent.succeeded", None, "pi_test_1"))

        assert result["order_id"] == started["order_id"]
        assert result["order_status"] == "paid"

    def test_unknown_order(self, checkout):
        result = deliver(checkout, stripe_event("evt_7", "payment_intent.succeeded", None, "pi_unknown"))

        assert result["processed"] is False
        assert result["reason"] == "order_not_found"

    def test_informational_event(self, checkout, started):
        result = deliver(checkout, stripe_event("evt_8", "payment_intent.requires_action", started["order_id"], "pi_test_1"))

        assert result["processed"] is False
        assert result["order_status"] == "pending"

    def test_payload_must_be_json(self, checkout):
        with pytest.raises(ValidationError):
            checkout.handle_webhook(b"<xml/>", VALID_WEBHOOK_SIGNATURE)


class TestConfirmPayment:
    """Test confirmation retries and repair"""

    def test_transient_ledger_failure_is_retried(self, checkout, started, sleep):
        """A failure after the order is paid is finished by the retry"""
        real_credit = checkout.ledger.credit
        calls = {"count": 0}

        def flaky_credit(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise InfrastructureError("database unavailable")
            return real_credit(*args, **kwargs)

        checkout.ledger.credit = flaky_credit

        order = checkout.confirm_payment(started["order_id"])

        assert order.status == "paid"
        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 100
        sleep.assert_called_once_with(0.5)

    def test_retries_exhausted(self, checkout, started, sleep):
        checkout.ledger.credit = Mock(side_effect=InfrastructureError("database unavailable"))

        with pytest.raises(InfrastructureError):
            checkout.confirm_payment(started["order_id"])

        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_replay_repairs_missing_invoice(self, checkout, started, db_session):
        """Re-confirming a paid order completes any step a crash skipped"""
        order_id = started["order_id"]
        checkout.orders.transition_order(order_id, "paid")
        assert db_session.query(Invoice).count() == 1

        db_session.query(Invoice).delete()
        db_session.commit()

        checkout.confirm_payment(order_id)

        assert db_session.query(Invoice).count() == 1
        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 100


class TestReconcile:
    """Test polling the provider for missed webhooks"""

    def test_reconcile_paid(self, checkout, started, fake_gateway):
        fake_gateway.payment_statuses["pi_test_1"] = {"status": "paid", "failure_reason": None}

        order = checkout.reconcile_order(started["order_id"])

        assert order.status == "paid"
        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 100

    def test_reconcile_still_pending(self, checkout, started):
        assert checkout.reconcile_order(started["order_id"]).status == "pending"

    def test_reconcile_then_webhook(self, checkout, started, fake_gateway):
        """Polling and the webhook racing to confirm grant credits once"""
        fake_gateway.payment_statuses["pi_test_1"] = {"status": "paid", "failure_reason": None}
        checkout.reconcile_order(started["order_id"])

        deliver(checkout, stripe_event("evt_9", "payment_intent.succeeded", started["order_id"], "pi_test_1"))

        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == 100

    def test_reconcile_pending_orders_only_stale(self, checkout, started, fake_gateway, db_session):
        fake_gateway.payment_statuses["pi_test_1"] = {"status": "failed", "failure_reason": "expired_card"}

        assert checkout.reconcile_pending_orders(older_than_minutes=15) == 0

        order = db_session.query(CreditOrder).one()
        order.created_at = datetime.utcnow() - timedelta(minutes=30)
        db_session.commit()

        assert checkout.reconcile_pending_orders(older_than_minutes=15) == 1
        assert checkout.orders.get_order(started["order_id"]).status == "failed"


class TestPurchaseScenario:
    def test_bulk_purchase_grants_plan_credits(self, checkout, db_session):
        """Quantity is recorded on the order; the plan decides the credits"""
        credit_plan = CreditPlan(name="Bulk", credit_amount=500, original_price=Decimal("100.00"), currency="usd")
        db_session.add(credit_plan)
        db_session.commit()

        started = checkout.start_checkout(BUSINESS_ID, credit_plan.id, 10, Decimal("1000"), "usd")

        deliver(checkout, stripe_event("evt_10", "payment_intent.succeeded", started["order_id"], "pi_test_1"))

        order = checkout.orders.get_order(started["order_id"])
        assert order.status == "paid"
        assert order.quantity == 10
        assert checkout.ledger.get_balance(BUSINESS_ID).total_credits == credit_plan.credit_amount
        invoices = db_session.query(Invoice).all()
        assert len(invoices) == 1
        assert invoices[0].amount == Decimal("1000.00")
