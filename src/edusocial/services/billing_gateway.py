"""
Payment gateway - interface to the payment provider
Creates checkout sessions / payment intents, reads their outcome and
verifies provider webhooks
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
from decimal import Decimal, ROUND_HALF_UP
import logging

from ..exceptions import ValidationError, InfrastructureError

logger = logging.getLogger(__name__)


# Declared order currency -> provider currency
CURRENCY_MAPPING = {
    "rm": "myr",  # Malaysian Ringgit
    "myr": "myr",
    "usd": "usd",
    "eur": "eur",
    "gbp": "gbp",
    "sgd": "sgd",
    "thb": "thb",
    "cad": "cad",
    "aud": "aud",
}

PAYMENT_METHODS_BY_CURRENCY = {
    "myr": ["card", "fpx", "grabpay", "alipay"],
    "sgd": ["card", "grabpay", "alipay"],
    "thb": ["card", "grabpay", "alipay"],
    "usd": ["card", "us_bank_account", "alipay"],
    "eur": ["card", "sepa_debit", "sofort", "ideal", "alipay"],
    "gbp": ["card", "bacs_debit", "alipay"],
    "cad": ["card", "acss_debit", "alipay"],
    "aud": ["card", "au_becs_debit", "alipay"],
}

# Normalised webhook event types
EVENT_PAYMENT_SUCCEEDED = "payment_succeeded"
EVENT_PAYMENT_FAILED = "payment_failed"
EVENT_PAYMENT_CANCELLED = "payment_cancelled"
EVENT_REQUIRES_ACTION = "requires_action"
EVENT_PAYMENT_PROCESSING = "payment_processing"

# Normalised payment statuses for polling
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_CANCELLED = "cancelled"
PAYMENT_STATUS_PENDING = "pending"


def normalize_currency(currency: Optional[str]) -> str:
    """Canonical code for a currency, resolving aliases such as "RM"; unknown codes are only lowercased"""
    normalized = (currency or "").strip().lower()
    return CURRENCY_MAPPING.get(normalized, normalized)


def map_currency(currency: str, policy: str = "fallback", default: str = "usd") -> str:
    """
    Map a declared currency onto one the provider accepts

    Args:
        currency: Currency as declared on the order or plan (e.g. "RM", "usd")
        policy: "fallback" substitutes the default, "reject" raises
        default: Currency used by the fallback policy

    Raises:
        ValidationError: unsupported currency under the reject policy
    """
    normalized = (currency or "").strip().lower()
    mapped = CURRENCY_MAPPING.get(normalized)
    if mapped:
        return mapped

    if policy == "reject":
        raise ValidationError(
            f"Unsupported currency: {currency}",
            {"currency": currency, "supported": sorted(set(CURRENCY_MAPPING.values()))},
        )

    logger.warning(f"Unsupported currency {currency!r}, falling back to {default}")
    return default


def filter_payment_methods(requested: Optional[List[str]], currency: str) -> List[str]:
    """Keep only payment methods the provider supports for this currency; card always works"""
    supported = PAYMENT_METHODS_BY_CURRENCY.get(currency, ["card"])
    methods = [m for m in (requested or ["card"]) if m in supported]
    return methods or ["card"]


def to_minor_units(amount) -> int:
    """Convert a decimal amount to integer minor units (cents)"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    """Abstract base class for payment providers"""

    provider_name = "unknown"
    currency_policy = "fallback"
    default_currency = "usd"

    def resolve_currency(self, currency: str) -> str:
        """Provider currency for a declared currency under this gateway's policy"""
        return map_currency(currency, self.currency_policy, self.default_currency)

    @abstractmethod
    def create_payment_session(
        self,
        order,
        description: str,
        payment_methods: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a payment session for an order

        Returns:
            {"payment_reference", "redirect_url", "client_secret", "currency", "amount", "provider"}
        """
        pass

    @abstractmethod
    def retrieve_payment_status(self, payment_reference: str) -> Dict[str, Any]:
        """Look up the current outcome of a payment session/intent"""
        pass

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify webhook signature"""
        pass

    @abstractmethod
    def parse_webhook_event(self, payload: Dict) -> Dict[str, Any]:
        """Parse webhook event into standardized format"""
        pass


class StripeGateway(PaymentGateway):
    """Stripe payment gateway"""

    provider_name = "stripe"

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        session_mode: str = "checkout",
        success_url: str = "",
        cancel_url: str = "",
        currency_policy: str = "fallback",
        default_currency: str = "usd",
        timeout: int = 20,
        is_test: bool = False,
    ):
        """
        Initialize Stripe gateway

        Args:
            api_key: Stripe API key (test or live)
            webhook_secret: Stripe webhook signing secret
            session_mode: "checkout" (hosted page, redirect URL) or "payment_intent" (client secret)
            success_url: Redirect after payment, may contain {order_id}
            cancel_url: Redirect on cancel, may contain {order_id}
            currency_policy: "fallback" or "reject" for unsupported currencies
            default_currency: Currency used by the fallback policy
            timeout: Request timeout in seconds
            is_test: Whether using test mode
        """
        import stripe

        self.stripe = stripe
        self.stripe.api_key = api_key
        self.stripe.max_network_retries = 2
        self.stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        self.webhook_secret = webhook_secret
        self.session_mode = session_mode
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.currency_policy = currency_policy
        self.default_currency = default_currency
        self.is_test = is_test

    def create_payment_session(
        self,
        order,
        description: str,
        payment_methods: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Create a Stripe Checkout Session or PaymentIntent for the order total"""
        currency = self.resolve_currency(order.currency)
        amount = to_minor_units(order.total_price)
        methods = filter_payment_methods(payment_methods, currency)
        metadata = {
            "orderId": order.id,
            "planId": order.plan_id,
            "businessAccountId": order.business_account_id,
        }

        try:
            if self.session_mode == "payment_intent":
                intent = self.stripe.PaymentIntent.create(
                    amount=amount,
                    currency=currency,
                    payment_method_types=methods,
                    metadata=metadata,
                    description=f"{description} - Order ID: {order.id}",
                    idempotency_key=f"order-{order.id}-intent",
                )
                result = {
                    "payment_reference": intent.id,
                    "redirect_url": None,
                    "client_secret": intent.client_secret,
                }
            else:
                session = self.stripe.checkout.Session.create(
                    mode="payment",
                    payment_method_types=methods,
                    line_items=[{
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": description},
                            "unit_amount": amount,
                        },
                        "quantity": 1,
                    }],
                    metadata=metadata,
                    payment_intent_data={"metadata": metadata},
                    success_url=self.success_url.format(order_id=order.id),
                    cancel_url=self.cancel_url.format(order_id=order.id),
                    idempotency_key=f"order-{order.id}-session",
                )
                result = {
                    "payment_reference": session.id,
                    "redirect_url": session.url,
                    "client_secret": None,
                }
        except self.stripe.StripeError as e:
            logger.error(f"Stripe payment session creation failed for order {order.id}: {e}")
            raise InfrastructureError(
                "Payment provider unavailable, please retry",
                {"provider": self.provider_name},
            ) from e

        result.update({
            "provider": self.provider_name,
            "currency": currency,
            "amount": amount,
        })
        logger.info(f"Created Stripe {self.session_mode} {result['payment_reference']} for order {order.id}")
        return result

    def retrieve_payment_status(self, payment_reference: str) -> Dict[str, Any]:
        """Normalised status of a Checkout Session (cs_...) or PaymentIntent (pi_...)"""
        try:
            if payment_reference.startswith("cs_"):
                session = self.stripe.checkout.Session.retrieve(payment_reference)
                if session.payment_status in ("paid", "no_payment_required"):
                    status = PAYMENT_STATUS_PAID
                elif session.status == "expired":
                    status = PAYMENT_STATUS_CANCELLED
                else:
                    status = PAYMENT_STATUS_PENDING
                return {
                    "status": status,
                    "payment_reference": session.id,
                    "payment_intent": session.payment_intent,
                    "failure_reason": None,
                }

            intent = self.stripe.PaymentIntent.retrieve(payment_reference)
        except self.stripe.StripeError as e:
            logger.error(f"Stripe payment lookup failed for {payment_reference}: {e}")
            raise InfrastructureError(
                "Payment provider unavailable, please retry",
                {"provider": self.provider_name},
            ) from e

        last_error = intent.last_payment_error
        if intent.status == "succeeded":
            status = PAYMENT_STATUS_PAID
        elif intent.status == "canceled":
            status = PAYMENT_STATUS_CANCELLED
        elif intent.status == "requires_payment_method" and last_error:
            status = PAYMENT_STATUS_FAILED
        else:
            status = PAYMENT_STATUS_PENDING

        return {
            "status": status,
            "payment_reference": intent.id,
            "payment_intent": intent.id,
            "failure_reason": last_error.message if last_error else None,
        }

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify Stripe webhook signature"""
        if not self.webhook_secret or not signature:
            return False
        try:
            self.stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret
            )
            return True
        except self.stripe.SignatureVerificationError:
            return False
        except ValueError as e:
            logger.warning(f"Stripe webhook payload could not be parsed: {e}")
            return False

    def parse_webhook_event(self, payload: Dict) -> Dict[str, Any]:
        """Parse Stripe webhook event"""
        event_type = payload.get("type", "")
        data = payload.get("data", {}).get("object", {}) or {}
        metadata = data.get("metadata") or {}

        event_mapping = {
            "payment_intent.succeeded": EVENT_PAYMENT_SUCCEEDED,
            "payment_intent.payment_failed": EVENT_PAYMENT_FAILED,
            "payment_intent.canceled": EVENT_PAYMENT_CANCELLED,
            "payment_intent.requires_action": EVENT_REQUIRES_ACTION,
            "checkout.session.completed": EVENT_PAYMENT_SUCCEEDED,
            "checkout.session.async_payment_succeeded": EVENT_PAYMENT_SUCCEEDED,
            "checkout.session.async_payment_failed": EVENT_PAYMENT_FAILED,
            "checkout.session.expired": EVENT_PAYMENT_CANCELLED,
        }
        normalized = event_mapping.get(event_type, event_type)

        # A completed session paid by a delayed method is not paid yet
        if event_type == "checkout.session.completed" and data.get("payment_status") not in ("paid", "no_payment_required"):
            normalized = EVENT_PAYMENT_PROCESSING

        last_error = data.get("last_payment_error") or {}

        return {
            "event_type": normalized,
            "raw_event_type": event_type,
            "provider": self.provider_name,
            "provider_event_id": payload.get("id", ""),
            "order_id": metadata.get("orderId") or metadata.get("order_id"),
            "payment_reference": data.get("id", ""),
            "amount": data.get("amount_total") if data.get("amount_total") is not None else data.get("amount"),
            "currency": data.get("currency"),
            "failure_reason": last_error.get("message"),
            "raw_data": data,
        }


def get_payment_gateway(config) -> PaymentGateway:
    """
    Build the configured payment gateway

    Args:
        config: Config object with payment provider settings

    Raises:
        InfrastructureError: provider credentials are not configured
    """
    api_key = config.stripe_secret_key
    webhook_secret = config.stripe_webhook_secret

    if not api_key:
        raise InfrastructureError("Stripe API key not configured", {"provider": "stripe"})

    return StripeGateway(
        api_key=api_key,
        webhook_secret=webhook_secret or "",
        session_mode=config.PAYMENT_SESSION_MODE,
        success_url=config.CHECKOUT_SUCCESS_URL,
        cancel_url=config.CHECKOUT_CANCEL_URL,
        currency_policy=config.CURRENCY_FALLBACK_POLICY,
        default_currency=config.DEFAULT_PAYMENT_CURRENCY,
        timeout=config.PAYMENT_TIMEOUT_SECONDS,
        is_test=not config.is_prod,
    )
