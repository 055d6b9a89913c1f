"""
Pytest configuration and fixtures
"""
import pytest
import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Dict, Any, List, Optional
from unittest.mock import Mock

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("REDIS_URL", None)
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["MODERATION_CALLBACK_SECRET"] = "test-moderation-secret"
os.environ["SCHEDULER_SECRET"] = "test-scheduler-secret"
os.environ["STRIPE_TEST_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_TEST_WEBHOOK_SECRET"] = "whsec_test_dummy"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests

# Import after setting env vars
from edusocial.app import create_app
from edusocial.auth import create_access_token
from edusocial.db.base import Base
from edusocial.db.engine import create_db_engine, get_db
from edusocial.db import models  # noqa: F401
from edusocial.db.models import CreditPlan, Post
from edusocial.dependencies import (
    get_gateway,
    get_webhook_gateway,
    get_kv,
    get_moderation_client,
    get_job_transport,
)
from edusocial.services.billing_gateway import PaymentGateway, StripeGateway
from edusocial.services.moderation_service import JobTransport
from edusocial.services.redis_cache import InMemoryKeyValueStore

VALID_WEBHOOK_SIGNATURE = "t=1,v1=valid"
BUSINESS_ID = "biz-1001"


class FakeGateway(PaymentGateway):
    """Payment gateway double; parses events exactly like Stripe does"""

    provider_name = "stripe"

    def __init__(self, currency_policy: str = "fallback"):
        self.currency_policy = currency_policy
        self.sessions: List[Dict[str, Any]] = []
        self.payment_statuses: Dict[str, Dict[str, Any]] = {}
        self.fail_sessions = False

    def create_payment_session(self, order, description, payment_methods=None):
        from edusocial.exceptions import InfrastructureError

        if self.fail_sessions:
            raise InfrastructureError("Payment provider unavailable, please retry")

        reference = f"pi_test_{len(self.sessions) + 1}"
        session = {
            "payment_reference": reference,
            "redirect_url": f"https://pay.example.com/{reference}",
            "client_secret": f"{reference}_secret",
            "provider": self.provider_name,
            "currency": self.resolve_currency(order.currency),
            "amount": int(order.total_price * 100),
            "order_id": order.id,
            "description": description,
        }
        self.sessions.append(session)
        return session

    def retrieve_payment_status(self, payment_reference):
        return self.payment_statuses.get(payment_reference, {
            "status": "pending",
            "payment_reference": payment_reference,
            "payment_intent": payment_reference,
            "failure_reason": None,
        })

    def verify_webhook_signature(self, payload, signature):
        return signature == VALID_WEBHOOK_SIGNATURE

    parse_webhook_event = StripeGateway.parse_webhook_event


class RecordingTransport(JobTransport):
    """Job transport that only remembers what it was given"""

    def __init__(self):
        self.submitted: List[tuple] = []

    def submit(self, job_id: str, delay_seconds: int = 0) -> None:
        self.submitted.append((job_id, delay_seconds))


def stripe_event(
    event_id: str,
    event_type: str,
    order_id: Optional[str],
    payment_reference: str,
    **extra,
) -> Dict[str, Any]:
    """Minimal Stripe webhook event body"""
    obj = {
        "id": payment_reference,
        "metadata": {"orderId": order_id} if order_id else {},
        "amount": 4900,
        "currency": "usd",
    }
    obj.update(extra)
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


@pytest.fixture(scope="function")
def test_engine():
    """Fresh in-memory database per test"""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine):
    """Create a database session for each test"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def session_factory(test_engine):
    """
    Independent sessions on the same database, for race tests

    The in-memory database has a single connection, so a session must
    commit before another one starts a transaction.
    """
    factory = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    opened = []

    def make_session(**kwargs):
        session = factory(**kwargs)
        opened.append(session)
        return session

    yield make_session

    for session in opened:
        session.close()


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def moderation_client():
    client = Mock()
    client.timeout = 10
    client.submit.return_value = {"accepted": True}
    return client


@pytest.fixture
def credit_plan(db_session):
    """An active 100-credit plan"""
    plan = CreditPlan(
        name="Starter",
        description="100 posting credits",
        credit_amount=100,
        original_price=Decimal("49.00"),
        currency="usd",
        is_active=True,
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture
def post(db_session):
    post = Post(author_id="user-7", post_type="picture")
    db_session.add(post)
    db_session.commit()
    db_session.refresh(post)
    return post


@pytest.fixture(scope="session")
def app():
    return create_app()


@pytest.fixture(scope="function")
def client(app, db_session, fake_gateway, kv_store, moderation_client, transport):
    """Test client with the database and outbound services replaced"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_webhook_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_kv] = lambda: kv_store
    app.dependency_overrides[get_moderation_client] = lambda: moderation_client
    app.dependency_overrides[get_job_transport] = lambda: transport

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def business_headers():
    """Bearer token for the test business account"""
    token = create_access_token(data={"sub": BUSINESS_ID, "account_type": "business"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    token = create_access_token(data={"sub": "user-42", "account_type": "user"})
    return {"Authorization": f"Bearer {token}"}
