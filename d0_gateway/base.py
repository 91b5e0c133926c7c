"""
Base checkout gateway shared by all payment processor providers
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import stripe

from core.exceptions import PaymentRequestInvalid, SignatureInvalidError
from core.logging import get_logger

# Every supported currency uses two decimal places
SUPPORTED_CURRENCIES = ("usd", "eur", "gbp", "cad", "aud")
MINOR_UNIT_FACTOR = Decimal(100)


def to_minor_units(amount: Decimal, currency: str) -> int:
    """
    Convert a decimal amount to the processor's integer minor units.

    This is the only place amounts are scaled; callers never pass floats.
    """
    if currency.lower() not in SUPPORTED_CURRENCIES:
        raise PaymentRequestInvalid("gateway", f"Unsupported currency: {currency}", currency=currency)
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    cents = (amount * MINOR_UNIT_FACTOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def from_minor_units(amount_minor_units: int) -> Decimal:
    """Convert processor minor units back to a two-place decimal"""
    return (Decimal(amount_minor_units) / MINOR_UNIT_FACTOR).quantize(Decimal("0.01"))


@dataclass
class CheckoutSessionResult:
    """Hosted checkout session minted by the processor"""

    session_id: str
    url: str
    expires_at: datetime


@dataclass
class SessionSnapshot:
    """Point-in-time view of a checkout session"""

    session_id: str
    status: Optional[str]
    payment_status: Optional[str]
    payment_intent_id: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class RefundResult:
    refund_id: str
    status: str


class CheckoutGateway(ABC):
    """Contract over the external processor's hosted checkout and refund APIs"""

    provider = "gateway"

    def __init__(self, webhook_secret: str, webhook_tolerance_seconds: int = 300):
        self.webhook_secret = webhook_secret
        self.webhook_tolerance_seconds = webhook_tolerance_seconds
        self.logger = get_logger(f"gateway.{self.provider}", domain="d0")

    @abstractmethod
    def create_session(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Dict[str, str],
        success_url: str,
        cancel_url: str,
        expiry_seconds: int,
        product_name: str,
        description: Optional[str] = None,
        customer_email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSessionResult:
        """Mint a hosted checkout session"""

    @abstractmethod
    def retrieve_session(self, session_id: str) -> SessionSnapshot:
        """Fetch the current state of a checkout session"""

    @abstractmethod
    def expire_session(self, session_id: str) -> None:
        """Close an open checkout session so it can no longer be paid"""

    @abstractmethod
    def create_refund(
        self,
        payment_intent_id: str,
        reason: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RefundResult:
        """Refund a captured payment in full"""

    def verify_webhook(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook signature against the raw request body and parse it.

        The signature covers the exact bytes received, so the body must not
        be decoded and re-encoded by anything upstream of this call.
        """
        if not signature_header:
            raise SignatureInvalidError("Missing webhook signature")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureInvalidError("Webhook payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature_header,
                self.webhook_secret,
                self.webhook_tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"Invalid webhook signature: {e}")
            raise SignatureInvalidError(f"Invalid webhook signature: {e}")

        try:
            event = json.loads(body)
        except ValueError:
            raise SignatureInvalidError("Signed webhook payload is not valid JSON")

        if not isinstance(event, dict) or "type" not in event:
            raise SignatureInvalidError("Signed webhook payload is not an event")
        return event
