"""
Tests for the error hierarchy and forwarded actor identity
"""
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from core.auth import Actor, Role, get_current_actor
from core.exceptions import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidStateError,
    InvalidStatusError,
    MarketplaceError,
    NotFoundError,
    PaymentGatewayError,
    PaymentRequestInvalid,
    RefundFailedError,
    SignatureInvalidError,
    ValidationError,
)
from d2_offers.models import OfferStatus


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "error,status_code,error_code",
        [
            (ValidationError("bad", field="price"), 400, "VALIDATION_ERROR"),
            (InvalidStatusError("paid", ["delivered"]), 400, "INVALID_STATUS"),
            (NotFoundError("Offer", "o-1"), 404, "NOT_FOUND"),
            (AuthorizationError("nope", user_id="u-1"), 403, "NOT_AUTHORIZED"),
            (InvalidStateError("no", current_status=OfferStatus.SENT), 409, "INVALID_STATE"),
            (ConcurrentModificationError("Offer", "o-1", OfferStatus.SENT), 409, "CONCURRENT_MODIFICATION"),
            (PaymentGatewayError("stripe", "timeout"), 502, "PAYMENT_GATEWAY_ERROR"),
            (PaymentRequestInvalid("stripe", "bad currency"), 400, "PAYMENT_REQUEST_INVALID"),
            (SignatureInvalidError(), 401, "SIGNATURE_INVALID"),
            (RefundFailedError("p-1", "declined"), 502, "REFUND_FAILED"),
        ],
    )
    def test_status_and_code(self, error, status_code, error_code):
        assert isinstance(error, MarketplaceError)
        assert error.status_code == status_code
        assert error.error_code == error_code
        assert error.to_dict()["error"] == error_code

    def test_invalid_status_is_a_validation_error(self):
        error = InvalidStatusError("paid", ["disputed", "delivered", "completed"])
        assert isinstance(error, ValidationError)
        assert error.details["allowed_statuses"] == ["completed", "delivered", "disputed"]
        assert "paid" in error.message

    def test_enum_statuses_are_flattened(self):
        error = InvalidStateError("no", current_status=OfferStatus.ACCEPTED)
        assert error.details["current_status"] == "accepted"
        assert error.current_status == "accepted"

        conflict = ConcurrentModificationError("Offer", "o-1", OfferStatus.SENT)
        assert conflict.details["expected_status"] == "sent"

    def test_retryable_errors(self):
        assert ConcurrentModificationError("Offer", "o-1", "sent").retryable is True
        assert PaymentGatewayError("stripe", "down").retryable is True
        assert PaymentRequestInvalid("stripe", "bad").retryable is False
        assert ValidationError("bad").retryable is False


class TestActorDependency:
    @pytest.fixture
    def client(self):
        app = FastAPI()

        @app.get("/whoami")
        def whoami(actor: Actor = Depends(get_current_actor)):
            return {"user_id": actor.user_id, "role": actor.role.value, "is_admin": actor.is_admin}

        return TestClient(app)

    def test_reads_forwarded_headers(self, client):
        response = client.get("/whoami", headers={"X-User-Id": "u-1", "X-User-Role": "Admin"})
        assert response.status_code == 200
        assert response.json() == {"user_id": "u-1", "role": "admin", "is_admin": True}

    def test_role_defaults_to_user(self, client):
        response = client.get("/whoami", headers={"X-User-Id": "u-1"})
        assert response.json()["role"] == Role.USER.value

    def test_missing_user_is_unauthorized(self, client):
        assert client.get("/whoami").status_code == 401

    def test_unknown_role_is_unauthorized(self, client):
        response = client.get("/whoami", headers={"X-User-Id": "u-1", "X-User-Role": "root"})
        assert response.status_code == 401
