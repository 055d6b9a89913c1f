"""
Checkout service - the credit purchase journey

Composes the order store, payment gateway, credit ledger and invoice
service: start a checkout, then confirm the payment from a provider webhook
or from polling. Confirmation is safe to repeat; a replay re-runs the
credit and invoice steps, which are idempotent per order.
"""
import json
import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Callable

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from ..db.models.billing import BillingEvent
from ..db.models.order import CreditOrder, OrderStatus
from ..exceptions import ValidationError, Unauthorized, InvalidTransition, InfrastructureError
from .billing_gateway import (
    PaymentGateway,
    normalize_currency,
    EVENT_PAYMENT_SUCCEEDED,
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_CANCELLED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_CANCELLED,
)
from .credit_ledger import CreditLedger
from .invoice_service import InvoiceService
from .order_store import OrderStore

logger = logging.getLogger(__name__)


class CheckoutService:
    """Orchestrates checkout and payment confirmation"""

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        order_store: Optional[OrderStore] = None,
        ledger: Optional[CreditLedger] = None,
        invoices: Optional[InvoiceService] = None,
        max_confirm_attempts: int = 3,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.gateway = gateway
        self.orders = order_store or OrderStore(db)
        self.ledger = ledger or CreditLedger(db)
        self.invoices = invoices or InvoiceService(db)
        self.max_confirm_attempts = max_confirm_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

        self.orders.on_paid(self._grant_credits)
        self.orders.on_paid(self._issue_invoice)

    def start_checkout(
        self,
        business_account_id: str,
        plan_id: str,
        quantity: int,
        total_price,
        currency: str,
        payment_methods: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a pending order and a payment session for it

        The amount charged is always the plan's effective price times the
        quantity, in the plan's currency. The client's declared total and
        currency are only checked against it.

        Raises:
            NotFound: plan does not exist
            ValidationError: plan inactive, bad quantity, declared total or currency
                disagrees with the plan, unsupported currency under the reject policy
            InfrastructureError: payment provider unavailable (order stays pending)
        """
        plan = self.orders.get_plan(plan_id)
        if not plan.is_active:
            raise ValidationError(f"Credit plan {plan_id} is not available", {"plan_id": plan_id})

        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer", {"quantity": quantity})

        expected_total = (plan.effective_price * quantity).quantize(Decimal("0.01"))
        try:
            declared_total = Decimal(str(total_price))
        except (InvalidOperation, ValueError):
            raise ValidationError("total_price must be a number", {"total_price": total_price})
        if not declared_total.is_finite() or declared_total != expected_total:
            logger.warning(
                f"Checkout for {business_account_id} declared {total_price} for plan {plan.id}, "
                f"expected {expected_total}"
            )
            raise ValidationError(
                "Declared total does not match the plan price",
                {"expected": str(expected_total), "declared": str(total_price)},
            )

        if normalize_currency(currency) != normalize_currency(plan.currency):
            raise ValidationError(
                "Declared currency does not match the plan currency",
                {"expected": plan.currency, "declared": currency},
            )

        # Fails before any order exists when the currency is rejected
        self.gateway.resolve_currency(plan.currency)

        order = self.orders.create_order(
            business_account_id=business_account_id,
            plan_id=plan.id,
            quantity=quantity,
            total_price=expected_total,
            currency=plan.currency,
        )

        session = self.gateway.create_payment_session(
            order,
            description=f"EduSocial Credits - {plan.name}",
            payment_methods=payment_methods,
        )

        self.orders.attach_payment_reference(
            order.id,
            provider=session["provider"],
            payment_reference=session["payment_reference"],
            payment_currency=session["currency"],
        )

        return {
            "order_id": order.id,
            "redirect_url": session.get("redirect_url"),
            "client_secret": session.get("client_secret"),
            "payment_reference": session["payment_reference"],
        }

    def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and apply a provider webhook

        Raises:
            Unauthorized: signature invalid (nothing is changed)
            ValidationError: payload is not JSON
            InfrastructureError: confirmation could not complete after retries
        """
        if not self.gateway.verify_webhook_signature(payload, signature):
            logger.warning("Rejected payment webhook with invalid signature")
            raise Unauthorized("Invalid webhook signature")

        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Webhook payload must be JSON")

        parsed = self.gateway.parse_webhook_event(event)
        replay = self._record_event(parsed, event)
        if replay:
            # Still processed: a replay may be the provider retrying after a partial failure
            logger.info(f"Webhook event {parsed['provider_event_id']} seen before, re-applying idempotently")

        order = self._order_for_event(parsed)
        if order is None:
            logger.warning(
                f"Webhook {parsed['raw_event_type']} ({parsed['provider_event_id']}) does not reference a known order"
            )
            return {"processed": False, "event_type": parsed["event_type"], "reason": "order_not_found"}

        meta = {
            "provider": parsed["provider"],
            "payment_reference": parsed["payment_reference"],
            "failure_reason": parsed.get("failure_reason"),
        }
        event_type = parsed["event_type"]

        if event_type == EVENT_PAYMENT_SUCCEEDED:
            try:
                order = self.confirm_payment(order.id, meta)
            except InvalidTransition as e:
                logger.error(f"Payment succeeded for order {order.id} that cannot be paid ({e.message}); needs manual review")
                return {"processed": False, "event_type": event_type, "order_id": order.id, "reason": "invalid_state"}
        elif event_type == EVENT_PAYMENT_FAILED:
            order = self._close_order(order.id, OrderStatus.FAILED.value, meta)
        elif event_type == EVENT_PAYMENT_CANCELLED:
            order = self._close_order(order.id, OrderStatus.CANCELLED.value, meta)
        else:
            logger.info(f"Webhook event {parsed['raw_event_type']} for order {order.id} needs no action")
            return {"processed": False, "event_type": event_type, "order_id": order.id, "order_status": order.status}

        return {"processed": True, "event_type": event_type, "order_id": order.id, "order_status": order.status}

    def confirm_payment(self, order_id: str, payment_meta: Optional[Dict[str, Any]] = None) -> CreditOrder:
        """
        Mark an order paid, credit the ledger and issue the invoice

        Infrastructure failures are retried with exponential backoff. Each
        step is idempotent, so a retry or a replayed webhook completes
        whatever a previous attempt left undone.

        Raises:
            NotFound: order does not exist
            InvalidTransition: order already failed or was cancelled
            InfrastructureError: retries exhausted
        """
        last_error = None
        for attempt in range(self.max_confirm_attempts):
            try:
                return self._confirm_once(order_id, payment_meta or {})
            except (InfrastructureError, OperationalError) as e:
                self.db.rollback()
                last_error = e
                if attempt < self.max_confirm_attempts - 1:
                    delay = self.retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Payment confirmation for order {order_id} failed "
                        f"(attempt {attempt + 1}/{self.max_confirm_attempts}): {e}. Retrying in {delay}s"
                    )
                    self.sleep(delay)

        logger.error(f"Payment confirmation for order {order_id} failed after {self.max_confirm_attempts} attempts: {last_error}")
        raise InfrastructureError(
            "Payment confirmation could not be completed, please retry",
            {"order_id": order_id},
        ) from last_error

    def _confirm_once(self, order_id: str, payment_meta: Dict[str, Any]) -> CreditOrder:
        order = self.orders.get_order(order_id)
        if order.is_paid:
            self.orders.emit_paid(order)
            return order

        try:
            return self.orders.transition_order(order_id, OrderStatus.PAID.value, payment_meta)
        except InvalidTransition:
            # Lost a race with another confirmation; finish its work if it was a payment
            order = self.orders.get_order(order_id)
            if order.is_paid:
                self.orders.emit_paid(order)
                return order
            raise

    def reconcile_order(self, order_id: str) -> CreditOrder:
        """
        Poll the provider for a pending order's outcome and apply it

        Safe to run alongside webhook delivery.
        """
        order = self.orders.get_order(order_id)
        if order.status != OrderStatus.PENDING.value or not order.payment_reference:
            return order

        outcome = self.gateway.retrieve_payment_status(order.payment_reference)
        meta = {
            "provider": self.gateway.provider_name,
            "failure_reason": outcome.get("failure_reason"),
        }
        status = outcome["status"]

        if status == PAYMENT_STATUS_PAID:
            return self.confirm_payment(order_id, meta)
        if status == PAYMENT_STATUS_FAILED:
            return self._close_order(order_id, OrderStatus.FAILED.value, meta)
        if status == PAYMENT_STATUS_CANCELLED:
            return self._close_order(order_id, OrderStatus.CANCELLED.value, meta)

        logger.debug(f"Order {order_id} still pending at provider")
        return order

    def reconcile_pending_orders(self, older_than_minutes: int = 15, limit: int = 50) -> int:
        """Poll stale pending orders; returns how many were checked"""
        cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        rows = self.db.query(CreditOrder.id).filter(
            CreditOrder.status == OrderStatus.PENDING.value,
            CreditOrder.payment_reference != None,  # noqa: E711
            CreditOrder.created_at <= cutoff,
        ).order_by(CreditOrder.created_at).limit(limit).all()

        checked = 0
        for (order_id,) in rows:
            try:
                self.reconcile_order(order_id)
            except InfrastructureError as e:
                logger.warning(f"Reconciliation of order {order_id} deferred: {e.message}")
            checked += 1
        return checked

    def _close_order(self, order_id: str, target_status: str, meta: Dict[str, Any]) -> CreditOrder:
        try:
            return self.orders.transition_order(order_id, target_status, meta)
        except InvalidTransition:
            order = self.orders.get_order(order_id)
            logger.info(f"Order {order_id} already {order.status}, ignoring move to {target_status}")
            return order

    def _grant_credits(self, order: CreditOrder) -> None:
        plan = self.orders.get_plan(order.plan_id)
        self.ledger.credit(
            order.business_account_id,
            order.id,
            plan.credit_amount,
            description=f"Credit purchase - {plan.name}",
        )

    def _issue_invoice(self, order: CreditOrder) -> None:
        self.invoices.generate_invoice(order.id)

    def _order_for_event(self, parsed: Dict[str, Any]) -> Optional[CreditOrder]:
        order_id = parsed.get("order_id")
        if order_id:
            return self.db.query(CreditOrder).filter(CreditOrder.id == order_id).first()
        return self.orders.find_by_payment_reference(parsed.get("payment_reference"))

    def _record_event(self, parsed: Dict[str, Any], event: Dict[str, Any]) -> bool:
        """Store the webhook for audit; returns True if it was already stored"""
        provider_event_id = parsed.get("provider_event_id")
        if not provider_event_id:
            return False

        try:
            with self.db.begin_nested():
                self.db.add(BillingEvent(
                    provider=parsed["provider"],
                    event_type=parsed.get("raw_event_type") or parsed["event_type"],
                    provider_event_id=provider_event_id,
                    order_id=parsed.get("order_id"),
                    payload_json=event,
                ))
                self.db.flush()
        except IntegrityError:
            return True

        self.db.commit()
        return False
