"""
Order store - persistence and lifecycle of credit purchase orders

All status changes go through transition_order(), which validates against
ALLOWED_TRANSITIONS and writes with a conditional UPDATE so a webhook and a
polling reconciliation racing on the same order cannot both win.
"""
from typing import Optional, List, Dict, Any, Callable
from decimal import Decimal, InvalidOperation
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import desc
import logging

from ..db.models.order import CreditOrder, CreditPlan, OrderStatus
from ..exceptions import ValidationError, NotFound, InvalidTransition

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def is_transition_allowed(current: str, target: str) -> bool:
    """Check a transition against the table; unknown statuses are never allowed"""
    try:
        return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]
    except ValueError:
        return False


PaidListener = Callable[[CreditOrder], None]


class OrderStore:
    """Service for creating, reading and transitioning credit orders"""

    def __init__(self, db: Session):
        self.db = db
        self._paid_listeners: List[PaidListener] = []

    def on_paid(self, listener: PaidListener) -> None:
        """Register a callback invoked after an order has been moved to paid"""
        self._paid_listeners.append(listener)

    def create_order(
        self,
        business_account_id: str,
        plan_id: str,
        quantity: int,
        total_price,
        currency: str,
    ) -> CreditOrder:
        """
        Create a pending order

        Raises:
            ValidationError: quantity or total price not positive, currency missing
        """
        if not business_account_id:
            raise ValidationError("business_account_id is required")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("quantity must be a positive integer", {"quantity": quantity})

        try:
            price = Decimal(str(total_price))
        except (InvalidOperation, ValueError):
            raise ValidationError("total_price must be a number", {"total_price": total_price})
        if not price.is_finite() or price <= 0:
            raise ValidationError("total_price must be greater than zero", {"total_price": str(total_price)})

        if not currency or not currency.strip():
            raise ValidationError("currency is required")

        order = CreditOrder(
            business_account_id=business_account_id,
            plan_id=plan_id,
            quantity=quantity,
            total_price=price.quantize(Decimal("0.01")),
            currency=currency.strip().lower(),
            status=OrderStatus.PENDING.value,
        )
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)

        logger.info(f"Created order {order.id} for account {business_account_id}: {quantity} x plan {plan_id}, {price} {order.currency}")
        return order

    def get_order(self, order_id: str) -> CreditOrder:
        """Get an order or raise NotFound"""
        order = self.db.query(CreditOrder).filter(CreditOrder.id == order_id).first()
        if not order:
            raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
        return order

    def find_by_payment_reference(self, payment_reference: str) -> Optional[CreditOrder]:
        if not payment_reference:
            return None
        return self.db.query(CreditOrder).filter(
            CreditOrder.payment_reference == payment_reference
        ).first()

    def list_orders(
        self,
        business_account_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CreditOrder]:
        query = self.db.query(CreditOrder).filter(CreditOrder.business_account_id == business_account_id)
        if status:
            query = query.filter(CreditOrder.status == status)
        return query.order_by(desc(CreditOrder.created_at)).offset(offset).limit(limit).all()

    def get_plan(self, plan_id: str) -> CreditPlan:
        plan = self.db.query(CreditPlan).filter(CreditPlan.id == plan_id).first()
        if not plan:
            raise NotFound(f"Credit plan {plan_id} not found", {"plan_id": plan_id})
        return plan

    def list_active_plans(self) -> List[CreditPlan]:
        return self.db.query(CreditPlan).filter(CreditPlan.is_active == True).order_by(CreditPlan.credit_amount).all()  # noqa: E712

    def attach_payment_reference(
        self,
        order_id: str,
        provider: str,
        payment_reference: str,
        payment_currency: Optional[str] = None,
    ) -> CreditOrder:
        """
        Record the provider session/intent on a pending order

        Raises:
            NotFound: order does not exist
            InvalidTransition: order already left pending
        """
        order = self.get_order(order_id)

        updated = self.db.query(CreditOrder).filter(
            CreditOrder.id == order_id,
            CreditOrder.status == OrderStatus.PENDING.value,
        ).update(
            {
                CreditOrder.payment_provider: provider,
                CreditOrder.payment_reference: payment_reference,
                CreditOrder.payment_currency: payment_currency,
                CreditOrder.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
        if updated == 0:
            self.db.rollback()
            self.db.refresh(order)
            raise InvalidTransition(
                f"Cannot attach payment to order {order_id} in status {order.status}",
                {"order_id": order_id, "status": order.status},
            )

        self.db.commit()
        self.db.refresh(order)
        return order

    def transition_order(
        self,
        order_id: str,
        target_status: str,
        payment_meta: Optional[Dict[str, Any]] = None,
    ) -> CreditOrder:
        """
        Move an order to a new status

        Args:
            order_id: Order ID
            target_status: One of OrderStatus values
            payment_meta: Optional provider details (payment_reference, provider, paid_at, failure_reason)

        Returns:
            Updated order

        Raises:
            NotFound: order does not exist
            ValidationError: unknown target status
            InvalidTransition: transition not in ALLOWED_TRANSITIONS, or another
                writer changed the status first
        """
        payment_meta = payment_meta or {}

        try:
            target = OrderStatus(target_status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {target_status}", {"status": target_status})

        order = self.get_order(order_id)
        current = order.status

        if not is_transition_allowed(current, target.value):
            raise InvalidTransition(
                f"Order {order_id} cannot move from {current} to {target.value}",
                {"order_id": order_id, "from": current, "to": target.value},
            )

        now = datetime.utcnow()
        values = {
            CreditOrder.status: target.value,
            CreditOrder.updated_at: now,
        }
        if target == OrderStatus.PAID:
            values[CreditOrder.paid_at] = payment_meta.get("paid_at") or now
        if payment_meta.get("payment_reference"):
            values[CreditOrder.payment_reference] = payment_meta["payment_reference"]
        if payment_meta.get("provider"):
            values[CreditOrder.payment_provider] = payment_meta["provider"]
        if target == OrderStatus.FAILED and payment_meta.get("failure_reason"):
            values[CreditOrder.failure_reason] = str(payment_meta["failure_reason"])[:500]

        # Compare-and-swap on the status we validated against
        updated = self.db.query(CreditOrder).filter(
            CreditOrder.id == order_id,
            CreditOrder.status == current,
        ).update(values, synchronize_session=False)

        if updated == 0:
            self.db.rollback()
            self.db.refresh(order)
            logger.warning(f"Lost status race on order {order_id}: expected {current}, found {order.status}")
            raise InvalidTransition(
                f"Order {order_id} changed concurrently (now {order.status})",
                {"order_id": order_id, "from": order.status, "to": target.value},
            )

        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order_id} transitioned {current} -> {target.value}")

        if target == OrderStatus.PAID:
            self._emit_paid(order)

        return order

    def emit_paid(self, order: CreditOrder) -> None:
        """Re-run paid listeners for an order that is already paid (replay repair)"""
        if not order.is_paid:
            raise InvalidTransition(
                f"Order {order.id} is not paid",
                {"order_id": order.id, "status": order.status},
            )
        self._emit_paid(order)

    def _emit_paid(self, order: CreditOrder) -> None:
        for listener in self._paid_listeners:
            listener(order)
