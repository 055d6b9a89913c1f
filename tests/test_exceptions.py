"""
Tests for error categories and the standard error body
"""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from edusocial.exceptions import (
    ErrorResponse,
    category_for_status,
    register_exception_handlers,
    ValidationError,
    Unauthorized,
    Forbidden,
    NotFound,
    InvalidState,
    InvalidTransition,
    InsufficientCredits,
    InfrastructureError,
)


@pytest.fixture
def error_client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/raise/{kind}")
    async def raise_error(kind: str):
        errors = {
            "validation": ValidationError("quantity must be a positive integer", {"quantity": 0}),
            "credits": InsufficientCredits("Not enough credits", {"available": 1, "requested": 5}),
            "infra": InfrastructureError("Payment provider unavailable, please retry"),
            "transition": InvalidTransition("Order o-1 cannot move from paid to failed"),
        }
        raise errors[kind]

    @app.get("/crash")
    async def crash():
        raise RuntimeError("postgresql://user:pass@db/edusocial refused connection")

    return TestClient(app, raise_server_exceptions=False)


class TestCategories:
    """Test mapping errors onto client-facing categories"""

    @pytest.mark.parametrize("status_code,category", [
        (400, "invalid_request"),
        (401, "invalid_request"),
        (404, "invalid_request"),
        (422, "invalid_request"),
        (402, "not_possible"),
        (409, "not_possible"),
        (500, "retry_later"),
        (503, "retry_later"),
    ])
    def test_category_for_status(self, status_code, category):
        assert category_for_status(status_code) == category

    def test_error_classes(self):
        assert ValidationError("x").status_code == 422
        assert Unauthorized("x").status_code == 401
        assert Forbidden("x").status_code == 403
        assert NotFound("x").status_code == 404
        assert InvalidTransition("x").status_code == 409
        assert isinstance(InvalidTransition("x"), InvalidState)
        assert InsufficientCredits("x").category == "not_possible"
        assert InfrastructureError("x").retryable is True

    def test_error_response_shape(self):
        body = ErrorResponse.create("Order not found", "NOT_FOUND", 404, request_id="req-1")

        assert body == {
            "code": "NOT_FOUND",
            "message": "Order not found",
            "status_code": 404,
            "category": "invalid_request",
            "request_id": "req-1",
        }


class TestHandlers:
    """Test rendering of domain errors"""

    def test_validation_error(self, error_client):
        response = error_client.get("/raise/validation")

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["details"] == {"quantity": 0}

    def test_insufficient_credits(self, error_client):
        response = error_client.get("/raise/credits")

        assert response.status_code == 402
        assert response.json()["category"] == "not_possible"

    def test_infrastructure_error_is_retryable(self, error_client):
        response = error_client.get("/raise/infra")

        assert response.status_code == 503
        assert response.json()["category"] == "retry_later"
        assert response.json()["details"]["retryable"] is True

    def test_invalid_transition(self, error_client):
        response = error_client.get("/raise/transition")

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    def test_unhandled_error_hides_internals(self, error_client):
        response = error_client.get("/crash")

        assert response.status_code == 500
        assert response.json()["code"] == "INTERNAL_ERROR"
        assert "postgresql://" not in response.text
