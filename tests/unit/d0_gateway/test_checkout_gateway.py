"""
Tests for amount conversion, webhook verification and gateway selection
"""
import json
import time
from decimal import Decimal

import pytest
from pydantic import SecretStr

from core.config import Settings
from core.exceptions import ConfigurationError, PaymentRequestInvalid, SignatureInvalidError
from d0_gateway.base import from_minor_units, to_minor_units
from d0_gateway.factory import (
    build_checkout_gateway,
    get_checkout_gateway,
    init_checkout_gateway,
    set_checkout_gateway,
)
from d0_gateway.providers.stripe import StripeCheckoutGateway
from d0_gateway.providers.stub import StubCheckoutGateway, sign_payload


class TestMinorUnits:
    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("50.00"), 5000),
            (Decimal("0.01"), 1),
            (Decimal("19.99"), 1999),
            (Decimal("12345678.90"), 1234567890),
            ("7.5", 750),
        ],
    )
    def test_to_minor_units(self, amount, expected):
        assert to_minor_units(amount, "usd") == expected

    def test_float_artifacts_do_not_leak(self):
        """0.1 + 0.2 style errors never reach the processor"""
        assert to_minor_units(Decimal("0.29"), "eur") == 29
        assert to_minor_units(0.29, "eur") == 29

    def test_currency_is_case_insensitive(self):
        assert to_minor_units(Decimal("1.00"), "GBP") == 100

    def test_unsupported_currency(self):
        with pytest.raises(PaymentRequestInvalid):
            to_minor_units(Decimal("10.00"), "jpy")

    def test_from_minor_units(self):
        assert from_minor_units(5000) == Decimal("50.00")
        assert from_minor_units(1) == Decimal("0.01")


class TestVerifyWebhook:
    @pytest.fixture
    def gateway(self):
        return StubCheckoutGateway(webhook_secret="whsec_test", webhook_tolerance_seconds=300)

    @pytest.fixture
    def payload(self):
        return json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {}}}).encode()

    def test_valid_signature(self, gateway, payload):
        event = gateway.verify_webhook(payload, gateway.sign(payload))
        assert event["id"] == "evt_1"
        assert event["type"] == "checkout.session.completed"

    def test_missing_signature(self, gateway, payload):
        with pytest.raises(SignatureInvalidError, match="Missing"):
            gateway.verify_webhook(payload, None)

    def test_tampered_payload(self, gateway, payload):
        signature = gateway.sign(payload)
        tampered = payload.replace(b"evt_1", b"evt_2")
        with pytest.raises(SignatureInvalidError):
            gateway.verify_webhook(tampered, signature)

    def test_wrong_secret(self, gateway, payload):
        with pytest.raises(SignatureInvalidError):
            gateway.verify_webhook(payload, sign_payload(payload, "whsec_other"))

    def test_stale_timestamp(self, gateway, payload):
        signature = gateway.sign(payload, timestamp=int(time.time()) - 3600)
        with pytest.raises(SignatureInvalidError):
            gateway.verify_webhook(payload, signature)

    def test_garbage_header(self, gateway, payload):
        with pytest.raises(SignatureInvalidError):
            gateway.verify_webhook(payload, "not-a-signature")

    def test_signed_non_json_body(self, gateway):
        body = b"definitely not json"
        with pytest.raises(SignatureInvalidError, match="JSON"):
            gateway.verify_webhook(body, gateway.sign(body))

    def test_signed_json_that_is_not_an_event(self, gateway):
        body = json.dumps(["a", "list"]).encode()
        with pytest.raises(SignatureInvalidError, match="not an event"):
            gateway.verify_webhook(body, gateway.sign(body))

    def test_body_must_be_utf8(self, gateway):
        with pytest.raises(SignatureInvalidError, match="UTF-8"):
            gateway.verify_webhook(b"\xff\xfe", "t=1,v1=abc")


class TestGatewayFactory:
    @pytest.fixture(autouse=True)
    def reset_gateway(self):
        set_checkout_gateway(None)
        yield
        set_checkout_gateway(None)

    def test_stub_mode_builds_stub_gateway(self):
        gateway = build_checkout_gateway(Settings(use_stubs=True, _env_file=None))
        assert isinstance(gateway, StubCheckoutGateway)
        assert gateway.webhook_secret == "whsec_stub_secret"

    def test_live_mode_builds_stripe_gateway(self):
        settings = Settings(
            use_stubs=False,
            stripe_secret_key=SecretStr("sk_test_123"),
            stripe_webhook_secret=SecretStr("whsec_live"),
            stripe_webhook_tolerance_seconds=120,
            _env_file=None,
        )
        gateway = build_checkout_gateway(settings)
        assert isinstance(gateway, StripeCheckoutGateway)
        assert gateway.api_key == "sk_test_123"
        assert gateway.webhook_secret == "whsec_live"
        assert gateway.webhook_tolerance_seconds == 120

    def test_get_before_init_raises(self):
        with pytest.raises(ConfigurationError):
            get_checkout_gateway()

    def test_init_installs_process_wide_gateway(self):
        gateway = init_checkout_gateway(Settings(use_stubs=True, _env_file=None))
        assert get_checkout_gateway() is gateway

    def test_set_overrides_gateway(self):
        custom = StubCheckoutGateway()
        set_checkout_gateway(custom)
        assert get_checkout_gateway() is custom
