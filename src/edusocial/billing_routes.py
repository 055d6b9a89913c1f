"""
Billing API routes - credit checkout, payment webhooks, orders, credits and invoices
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request, Header, Query
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from sqlalchemy.orm import Session
from decimal import Decimal
import logging

from .auth import CurrentUser, get_current_user, require_business_account
from .db.engine import get_db
from .dependencies import (
    build_checkout_service,
    get_checkout_service,
    get_webhook_gateway,
    get_order_store,
    get_credit_ledger,
    get_invoice_service,
)
from .exceptions import EduSocialError, NotFound, Unauthorized, InfrastructureError
from .services.billing_gateway import PaymentGateway
from .services.checkout_service import CheckoutService
from .services.credit_ledger import CreditLedger
from .services.invoice_service import InvoiceService
from .services.order_store import OrderStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to buy a credit plan"""
    model_config = ConfigDict(populate_by_name=True)

    business_account_id: str = Field(..., alias="businessAccountId")
    plan_id: str = Field(..., alias="planId")
    quantity: int = Field(..., description="Number of plan units")
    total_price: Decimal = Field(..., alias="totalPrice")
    currency: str = Field(..., min_length=2, max_length=3)
    payment_methods: Optional[List[str]] = Field(None, alias="paymentMethods")


class CheckoutResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    redirect_url: Optional[str] = Field(None, alias="redirectUrl")
    client_secret: Optional[str] = Field(None, alias="clientSecret")


def _owned_order(order_store: OrderStore, order_id: str, user: CurrentUser):
    order = order_store.get_order(order_id)
    # Other accounts' orders look absent
    if order.business_account_id != user.id:
        raise NotFound(f"Order {order_id} not found", {"order_id": order_id})
    return order


@router.post("/checkout", response_model=CheckoutResponse, response_model_by_alias=True)
async def start_checkout(
    request: CheckoutRequest,
    current_user: CurrentUser = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """
    Start a credit purchase

    Creates a pending order and a payment session. Credits are granted only
    after the provider confirms payment (webhook or reconciliation).
    """
    require_business_account(current_user, request.business_account_id)

    result = checkout.start_checkout(
        business_account_id=request.business_account_id,
        plan_id=request.plan_id,
        quantity=request.quantity,
        total_price=request.total_price,
        currency=request.currency,
        payment_methods=request.payment_methods,
    )
    return CheckoutResponse(
        order_id=result["order_id"],
        redirect_url=result["redirect_url"],
        client_secret=result["client_secret"],
    )


@router.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    gateway: Optional[PaymentGateway] = Depends(get_webhook_gateway),
):
    """
    Payment provider webhook

    200 when processed, 401 on a bad signature, 500 otherwise so the
    provider retries.
    """
    payload = await request.body()

    try:
        if gateway is None:
            raise InfrastructureError("Payment provider is not configured")
        checkout = build_checkout_service(db, gateway)
        result = checkout.handle_webhook(payload, stripe_signature)
    except Unauthorized:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature"
        )
    except InfrastructureError as e:
        logger.error(f"Payment webhook processing failed: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed"
        )
    except EduSocialError:
        raise
    except Exception as e:
        logger.error(f"Payment webhook processing failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed"
        )

    return {"status": "ok", **result}


@router.get("/credit-plans")
async def list_credit_plans(
    current_user: CurrentUser = Depends(get_current_user),
    order_store: OrderStore = Depends(get_order_store),
):
    return {"plans": [plan.to_dict() for plan in order_store.list_active_plans()]}


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    order_store: OrderStore = Depends(get_order_store),
):
    return _owned_order(order_store, order_id, current_user).to_dict()


@router.get("/orders/{order_id}/invoice")
async def get_order_invoice(
    order_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    order_store: OrderStore = Depends(get_order_store),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    """Invoice for an order; 404 until the order is paid and invoiced"""
    _owned_order(order_store, order_id, current_user)
    invoice = invoices.get_invoice_for_order(order_id)
    if not invoice:
        raise NotFound(f"No invoice for order {order_id} yet", {"order_id": order_id})
    return invoice.to_dict()


@router.post("/orders/{order_id}/reconcile")
async def reconcile_order(
    order_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Ask the payment provider for the order's outcome (used when the webhook is late)"""
    _owned_order(checkout.orders, order_id, current_user)
    return checkout.reconcile_order(order_id).to_dict()


@router.get("/invoices/{invoice_number}")
async def get_invoice(
    invoice_number: str,
    current_user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    invoice = invoices.get_invoice_by_number(invoice_number)
    if invoice.business_account_id != current_user.id:
        raise NotFound(f"Invoice {invoice_number} not found", {"invoice_number": invoice_number})
    return invoice.to_dict()


@router.get("/business/{business_account_id}/orders")
async def list_orders(
    business_account_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    order_store: OrderStore = Depends(get_order_store),
):
    require_business_account(current_user, business_account_id)
    orders = order_store.list_orders(business_account_id, status_filter, limit, offset)
    return {"orders": [order.to_dict() for order in orders], "limit": limit, "offset": offset}


@router.get("/business/{business_account_id}/credits")
async def get_credits(
    business_account_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    require_business_account(current_user, business_account_id)
    return ledger.get_balance(business_account_id).to_dict()


@router.get("/business/{business_account_id}/credit-transactions")
async def list_credit_transactions(
    business_account_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    require_business_account(current_user, business_account_id)
    transactions = ledger.list_transactions(business_account_id, limit, offset)
    return {"transactions": [t.to_dict() for t in transactions], "limit": limit, "offset": offset}


@router.get("/business/{business_account_id}/invoices")
async def list_invoices(
    business_account_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    require_business_account(current_user, business_account_id)
    return {
        "invoices": [i.to_dict() for i in invoices.list_invoices(business_account_id, limit, offset)],
        "limit": limit,
        "offset": offset,
    }
