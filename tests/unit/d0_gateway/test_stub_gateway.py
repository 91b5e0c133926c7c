"""
Tests for the in-process stub checkout gateway
"""
import json

import pytest

from core.exceptions import PaymentGatewayError, PaymentRequestInvalid


@pytest.fixture
def session_args():
    return {
        "amount_minor_units": 5000,
        "currency": "USD",
        "metadata": {"offerId": "offer-1", "paymentId": "pay-1"},
        "success_url": "https://app.example.com/payment/success?session_id={CHECKOUT_SESSION_ID}",
        "cancel_url": "https://app.example.com/payment/cancel?offer_id=offer-1",
        "expiry_seconds": 1800,
        "product_name": "Logo design",
    }


class TestStubSessions:
    def test_create_session(self, gateway, session_args):
        result = gateway.create_session(**session_args)

        assert result.session_id.startswith("cs_test_")
        assert result.url.endswith(result.session_id)
        stored = gateway.sessions[result.session_id]
        assert stored["status"] == "open"
        assert stored["amount_total"] == 5000
        assert stored["currency"] == "usd"
        assert stored["metadata"]["offerId"] == "offer-1"

    def test_idempotency_key_returns_same_session(self, gateway, session_args):
        first = gateway.create_session(idempotency_key="checkout-session-pay-1", **session_args)
        second = gateway.create_session(idempotency_key="checkout-session-pay-1", **session_args)

        assert first.session_id == second.session_id
        assert len(gateway.sessions) == 1

    def test_retrieve_session(self, gateway, session_args):
        result = gateway.create_session(**session_args)
        gateway.complete_session(result.session_id, payment_intent_id="pi_123")

        snapshot = gateway.retrieve_session(result.session_id)
        assert snapshot.status == "complete"
        assert snapshot.payment_status == "paid"
        assert snapshot.payment_intent_id == "pi_123"
        assert snapshot.amount_total == 5000

    def test_retrieve_unknown_session(self, gateway):
        with pytest.raises(PaymentRequestInvalid):
            gateway.retrieve_session("cs_test_missing")

    def test_expire_open_session(self, gateway, session_args):
        result = gateway.create_session(**session_args)
        gateway.expire_session(result.session_id)
        assert gateway.sessions[result.session_id]["status"] == "expired"

    def test_expire_completed_session_is_rejected(self, gateway, session_args):
        result = gateway.create_session(**session_args)
        gateway.complete_session(result.session_id)
        with pytest.raises(PaymentRequestInvalid):
            gateway.expire_session(result.session_id)

    def test_create_session_callback(self, gateway, session_args):
        seen = []
        gateway.on_create_session = seen.append

        result = gateway.create_session(**session_args)
        assert seen == [result.session_id]


class TestStubFailures:
    def test_fail_next_raises_once(self, gateway, session_args):
        gateway.fail_next("create_session", PaymentGatewayError("stub", "unavailable"))

        with pytest.raises(PaymentGatewayError):
            gateway.create_session(**session_args)
        assert gateway.create_session(**session_args).session_id

    def test_failures_are_per_operation(self, gateway):
        gateway.fail_next("create_refund", PaymentRequestInvalid("stub", "charge already refunded"))

        with pytest.raises(PaymentRequestInvalid):
            gateway.create_refund("pi_1", "requested_by_customer")
        refund = gateway.create_refund("pi_1", "requested_by_customer")
        assert refund.status == "succeeded"
        assert gateway.refunds[refund.refund_id]["payment_intent"] == "pi_1"


class TestStubEvents:
    def test_build_and_verify_event(self, gateway, session_args):
        result = gateway.create_session(**session_args)
        payload = gateway.build_event(
            "checkout.session.completed",
            gateway.complete_session(result.session_id),
            event_id="evt_fixed",
        )

        event = gateway.verify_webhook(payload, gateway.sign(payload))
        assert event["id"] == "evt_fixed"
        assert event["data"]["object"]["id"] == result.session_id
        assert event["data"]["object"]["payment_status"] == "paid"
        assert event["data"]["object"]["metadata"]["paymentId"] == "pay-1"

    def test_lapse_session(self, gateway, session_args):
        result = gateway.create_session(**session_args)
        data = gateway.lapse_session(result.session_id)
        assert data["status"] == "expired"
        assert data["payment_status"] == "unpaid"
        assert json.loads(gateway.build_event("checkout.session.expired", data))["type"] == "checkout.session.expired"
