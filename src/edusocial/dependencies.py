"""
FastAPI dependency providers for services

Routes never construct gateways, stores or clients themselves; tests swap
any of these through app.dependency_overrides.
"""
import logging
from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import config
from .db.engine import get_db
from .exceptions import InfrastructureError
from .services.billing_gateway import PaymentGateway, get_payment_gateway
from .services.checkout_service import CheckoutService
from .services.credit_ledger import CreditLedger
from .services.engagement_queue import EngagementQueue
from .services.invoice_service import InvoiceService
from .services.moderation_service import (
    ModerationDispatcher,
    ModerationClient,
    JobTransport,
    SchedulerJobTransport,
)
from .services.order_store import OrderStore
from .services.redis_cache import get_kv_store

logger = logging.getLogger(__name__)


def get_gateway() -> PaymentGateway:
    return get_payment_gateway(config)


def get_webhook_gateway() -> Optional[PaymentGateway]:
    """
    Gateway for the provider webhook, or None when the provider is not configured

    The webhook route turns a missing gateway into a 500 so the provider retries.
    """
    try:
        return get_gateway()
    except InfrastructureError as e:
        logger.error(f"Payment gateway unavailable for webhook: {e.message}")
        return None


def get_order_store(db: Session = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_credit_ledger(db: Session = Depends(get_db)) -> CreditLedger:
    return CreditLedger(db)


def get_invoice_service(db: Session = Depends(get_db)) -> InvoiceService:
    return InvoiceService(db)


def build_checkout_service(db: Session, gateway: PaymentGateway) -> CheckoutService:
    return CheckoutService(
        db,
        gateway,
        max_confirm_attempts=config.PAYMENT_CONFIRM_MAX_ATTEMPTS,
    )


def get_checkout_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
) -> CheckoutService:
    return build_checkout_service(db, gateway)


def get_kv() -> object:
    return get_kv_store()


def get_engagement_queue(
    db: Session = Depends(get_db),
    store=Depends(get_kv),
) -> EngagementQueue:
    return EngagementQueue(db, store, lock_ttl_ms=config.ENGAGEMENT_LOCK_TTL_MS)


def get_moderation_client() -> ModerationClient:
    return ModerationClient(
        base_url=config.MODERATION_SERVICE_URL,
        api_key=config.MODERATION_API_KEY,
        callback_url=config.MODERATION_CALLBACK_URL,
        timeout=config.MODERATION_TIMEOUT_SECONDS,
    )


def get_job_transport() -> JobTransport:
    return SchedulerJobTransport()


def get_moderation_dispatcher(
    db: Session = Depends(get_db),
    client: ModerationClient = Depends(get_moderation_client),
    transport: JobTransport = Depends(get_job_transport),
) -> ModerationDispatcher:
    return ModerationDispatcher(
        db=db,
        client=client,
        transport=transport,
        callback_secret=config.MODERATION_CALLBACK_SECRET,
        max_attempts=config.MODERATION_MAX_ATTEMPTS,
        backoff_seconds=config.MODERATION_BACKOFF_SECONDS,
    )
