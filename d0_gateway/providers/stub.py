"""
In-process checkout gateway used when USE_STUBS is enabled

Mirrors the shape of Stripe's checkout sessions and refunds closely enough
for local development and tests, and can build correctly signed webhook
payloads for those sessions.
"""
import hashlib
import hmac
import json
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import MarketplaceError, PaymentRequestInvalid
from core.metrics import metrics

from ..base import CheckoutGateway, CheckoutSessionResult, RefundResult, SessionSnapshot


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for a payload"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class StubCheckoutGateway(CheckoutGateway):
    """Checkout gateway that keeps sessions and refunds in memory"""

    provider = "stub"

    def __init__(self, webhook_secret: str = "whsec_stub_secret", webhook_tolerance_seconds: int = 300):
        super().__init__(webhook_secret, webhook_tolerance_seconds)
        self._lock = threading.Lock()
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.refunds: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[str, List[Exception]] = {}
        # Called with the session id after a session is minted, before returning
        self.on_create_session: Optional[Callable[[str], None]] = None

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call to `operation` raise `error`"""
        with self._lock:
            self._failures.setdefault(operation, []).append(error)

    def _maybe_fail(self, operation: str) -> None:
        with self._lock:
            queued = self._failures.get(operation)
            error = queued.pop(0) if queued else None
        if error is not None:
            status = "rejected" if isinstance(error, MarketplaceError) and not error.retryable else "error"
            metrics.track_gateway_call(self.provider, operation, status, 0.0)
            raise error

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
        self._maybe_fail("create_session")

        with self._lock:
            if idempotency_key:
                for existing in self.sessions.values():
                    if existing["idempotency_key"] == idempotency_key:
                        return CheckoutSessionResult(
                            session_id=existing["id"],
                            url=existing["url"],
                            expires_at=existing["expires_at"],
                        )

            session_id = f"cs_test_{uuid.uuid4().hex}"
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=expiry_seconds)
            self.sessions[session_id] = {
                "id": session_id,
                "url": f"https://checkout.stripe.com/c/pay/{session_id}",
                "status": "open",
                "payment_status": "unpaid",
                "payment_intent": None,
                "amount_total": amount_minor_units,
                "currency": currency.lower(),
                "customer_email": customer_email,
                "metadata": dict(metadata),
                "product_name": product_name,
                "description": description,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "expires_at": expires_at,
                "idempotency_key": idempotency_key,
            }
            session = self.sessions[session_id]

        metrics.track_gateway_call(self.provider, "create_session", "success", 0.0)
        self.logger.info(f"Stub checkout session {session_id} created", extra={"session_id": session_id})

        if self.on_create_session is not None:
            self.on_create_session(session_id)

        return CheckoutSessionResult(session_id=session_id, url=session["url"], expires_at=expires_at)

    def retrieve_session(self, session_id: str) -> SessionSnapshot:
        self._maybe_fail("retrieve_session")

        session = self.sessions.get(session_id)
        if session is None:
            raise PaymentRequestInvalid(self.provider, f"No such checkout session: {session_id}")

        return SessionSnapshot(
            session_id=session_id,
            status=session["status"],
            payment_status=session["payment_status"],
            payment_intent_id=session["payment_intent"],
            amount_total=session["amount_total"],
            currency=session["currency"],
            customer_email=session["customer_email"],
            expires_at=session["expires_at"],
            metadata=dict(session["metadata"]),
        )

    def expire_session(self, session_id: str) -> None:
        self._maybe_fail("expire_session")

        session = self.sessions.get(session_id)
        if session is None:
            raise PaymentRequestInvalid(self.provider, f"No such checkout session: {session_id}")
        if session["status"] != "open":
            raise PaymentRequestInvalid(self.provider, f"Checkout session {session_id} is not open")
        session["status"] = "expired"
        metrics.track_gateway_call(self.provider, "expire_session", "success", 0.0)

    def create_refund(
        self,
        payment_intent_id: str,
        reason: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RefundResult:
        self._maybe_fail("create_refund")

        refund_id = f"re_stub_{uuid.uuid4().hex}"
        with self._lock:
            self.refunds[refund_id] = {
                "id": refund_id,
                "payment_intent": payment_intent_id,
                "reason": reason,
                "metadata": dict(metadata or {}),
                "status": "succeeded",
            }
        metrics.track_gateway_call(self.provider, "create_refund", "success", 0.0)
        return RefundResult(refund_id=refund_id, status="succeeded")

    # Helpers for simulating the processor side

    def complete_session(self, session_id: str, payment_intent_id: Optional[str] = None) -> Dict[str, Any]:
        """Mark a session paid and return its checkout.session.completed object"""
        session = self.sessions[session_id]
        session["status"] = "complete"
        session["payment_status"] = "paid"
        session["payment_intent"] = payment_intent_id or f"pi_stub_{uuid.uuid4().hex}"
        return self.session_object(session_id)

    def lapse_session(self, session_id: str) -> Dict[str, Any]:
        """Let a session run out unpaid and return its checkout.session.expired object"""
        session = self.sessions[session_id]
        session["status"] = "expired"
        return self.session_object(session_id)

    def session_object(self, session_id: str) -> Dict[str, Any]:
        session = self.sessions[session_id]
        return {
            "id": session_id,
            "object": "checkout.session",
            "status": session["status"],
            "payment_status": session["payment_status"],
            "payment_intent": session["payment_intent"],
            "amount_total": session["amount_total"],
            "currency": session["currency"],
            "customer_email": session["customer_email"],
            "metadata": dict(session["metadata"]),
            "expires_at": int(session["expires_at"].timestamp()),
        }

    def build_event(self, event_type: str, data_object: Dict[str, Any], event_id: Optional[str] = None) -> bytes:
        """Serialize a webhook event the way the processor delivers it"""
        event = {
            "id": event_id or f"evt_stub_{uuid.uuid4().hex}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "livemode": False,
            "data": {"object": data_object},
        }
        return json.dumps(event).encode("utf-8")

    def sign(self, payload: bytes, timestamp: Optional[int] = None) -> str:
        return sign_payload(payload, self.webhook_secret, timestamp)
