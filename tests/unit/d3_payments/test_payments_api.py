"""
Tests for the payment REST endpoints and webhook receiver
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from d3_payments.webhook_handlers import CheckoutSessionHandler

WEBHOOK_PATH = "/api/v1/payments/webhook"


def post_event(client, gateway, event_type, data_object, event_id=None, signature=None):
    payload = gateway.build_event(event_type, data_object, event_id=event_id)
    headers = {"Content-Type": "application/json", "Stripe-Signature": signature or gateway.sign(payload)}
    return client.post(WEBHOOK_PATH, content=payload, headers=headers)


class TestWebhookEndpoint:
    def test_completed_checkout(self, client, accepted, gateway, load_offer):
        session_object = gateway.complete_session(accepted.session.session_id)

        response = post_event(client, gateway, "checkout.session.completed", session_object, event_id="evt_1")

        assert response.status_code == 200
        body = response.json()
        assert body["received"] is True
        assert body["handled"] is True
        assert body["status"] == "completed"
        assert body["event_id"] == "evt_1"
        assert load_offer(accepted.offer.id).status.value == "in_progress"

    def test_bad_signature_is_unauthorized(self, client, accepted, gateway, load_offer):
        session_object = gateway.complete_session(accepted.session.session_id)

        response = post_event(
            client, gateway, "checkout.session.completed", session_object, signature="t=1,v1=00"
        )

        assert response.status_code == 401
        assert response.json()["error"] == "SIGNATURE_INVALID"
        assert load_offer(accepted.offer.id).status.value == "accepted"

    def test_missing_signature(self, client):
        response = client.post(WEBHOOK_PATH, content=b"{}", headers={"Content-Type": "application/json"})
        assert response.status_code == 401

    def test_unhandled_event_is_acknowledged(self, client, gateway):
        response = post_event(client, gateway, "invoice.paid", {"id": "in_1"})
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_handler_failure_acknowledged_by_default(self, client, accepted, gateway):
        session_object = gateway.complete_session(accepted.session.session_id)
        with patch.object(CheckoutSessionHandler, "_advance_offer", side_effect=RuntimeError("boom")):
            response = post_event(client, gateway, "checkout.session.completed", session_object)

        assert response.status_code == 200
        assert response.json()["status"] == "failed"

    def test_handler_failure_requests_retry(self, test_settings, session_factory, gateway, relay, accepted):
        from main import create_app

        settings = test_settings.model_copy(update={"webhook_failure_mode": "retry"})
        retry_client = TestClient(
            create_app(settings=settings, session_factory=session_factory, gateway=gateway, relay=relay)
        )
        session_object = gateway.complete_session(accepted.session.session_id)

        with patch.object(CheckoutSessionHandler, "_advance_offer", side_effect=RuntimeError("boom")):
            response = post_event(retry_client, gateway, "checkout.session.completed", session_object)

        assert response.status_code == 500
        assert response.json()["status"] == "failed"


class TestRefundEndpoint:
    def test_seller_refund(self, client, paid, seller_headers):
        response = client.post(
            f"/api/v1/payments/{paid.payment.id}/refund",
            json={"reason": "Out of capacity"},
            headers=seller_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["refund_status"] == "succeeded"
        assert body["payment"]["status"] == "refunded"
        assert body["payment"]["refund_reason"] == "Out of capacity"
        assert body["offer"]["status"] == "cancelled"

    def test_refund_without_body(self, client, paid, seller_headers):
        response = client.post(f"/api/v1/payments/{paid.payment.id}/refund", headers=seller_headers)
        assert response.status_code == 200

    def test_buyer_cannot_refund(self, client, paid, buyer_headers):
        response = client.post(f"/api/v1/payments/{paid.payment.id}/refund", headers=buyer_headers)
        assert response.status_code == 403

    def test_refund_pending_payment(self, client, accepted, seller_headers):
        response = client.post(f"/api/v1/payments/{accepted.payment.id}/refund", headers=seller_headers)
        assert response.status_code == 409

    def test_processor_refusal(self, client, paid, seller_headers, gateway):
        from core.exceptions import PaymentRequestInvalid

        gateway.fail_next("create_refund", PaymentRequestInvalid("stub", "Charge disputed"))
        response = client.post(f"/api/v1/payments/{paid.payment.id}/refund", headers=seller_headers)

        assert response.status_code == 502
        assert response.json()["error"] == "REFUND_FAILED"


class TestPaymentLookups:
    def test_status_by_session(self, client, paid, buyer_headers):
        response = client.get(f"/api/v1/payments/status/{paid.session.session_id}", headers=buyer_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["session_status"] == "complete"
        assert body["payment_status"] == "paid"
        assert body["amount_total"] == "50.00"
        assert body["payment"]["id"] == paid.payment.id

    def test_status_unknown_session(self, client, buyer_headers):
        assert client.get("/api/v1/payments/status/cs_test_nope", headers=buyer_headers).status_code == 404

    def test_payment_for_offer(self, client, accepted, seller_headers, headers_for):
        response = client.get(f"/api/v1/payments/offer/{accepted.offer.id}", headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "pending"

        stranger = client.get(f"/api/v1/payments/offer/{accepted.offer.id}", headers=headers_for("someone-else"))
        assert stranger.status_code == 403

    def test_list_payments(self, client, paid, buyer_headers):
        response = client.get("/api/v1/payments", params={"status": "succeeded"}, headers=buyer_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["page"] == 1
        assert body["has_next_page"] is False
        assert body["payments"][0]["id"] == paid.payment.id

    @pytest.mark.parametrize("params", [{"limit": 500}, {"page": 0}, {"role": "owner"}])
    def test_list_invalid(self, client, buyer_headers, params):
        assert client.get("/api/v1/payments", params=params, headers=buyer_headers).status_code == 400


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["gateway"] == "stub"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "marketplace" in response.text
