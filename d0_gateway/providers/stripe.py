"""
Stripe checkout gateway using the official SDK
"""
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import stripe

from core.exceptions import PaymentGatewayError, PaymentRequestInvalid
from core.metrics import metrics

from ..base import CheckoutGateway, CheckoutSessionResult, RefundResult, SessionSnapshot

# Errors that mean the request itself is wrong and retrying will not help
CLIENT_ERRORS = (
    stripe.InvalidRequestError,
    stripe.CardError,
    stripe.AuthenticationError,
    stripe.PermissionError,
    stripe.IdempotencyError,
)


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class StripeCheckoutGateway(CheckoutGateway):
    """Stripe hosted Checkout and Refund APIs"""

    provider = "stripe"

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        webhook_tolerance_seconds: int = 300,
    ):
        super().__init__(webhook_secret, webhook_tolerance_seconds)
        self.api_key = api_key

    def _call(self, operation: str, func: Callable[..., Any], **kwargs) -> Any:
        """Invoke an SDK function, timing it and mapping SDK errors"""
        start = time.time()
        try:
            result = func(api_key=self.api_key, **kwargs)
        except CLIENT_ERRORS as e:
            metrics.track_gateway_call(self.provider, operation, "rejected", time.time() - start)
            self.logger.warning(f"Stripe rejected {operation}: {e.user_message or e}")
            raise PaymentRequestInvalid(
                self.provider,
                str(e.user_message or e),
                operation=operation,
                stripe_code=getattr(e, "code", None),
            )
        except stripe.StripeError as e:
            metrics.track_gateway_call(self.provider, operation, "error", time.time() - start)
            self.logger.error(f"Stripe {operation} failed: {e}")
            raise PaymentGatewayError(
                self.provider,
                str(e.user_message or e),
                operation=operation,
                http_status=getattr(e, "http_status", None),
            )

        metrics.track_gateway_call(self.provider, operation, "success", time.time() - start)
        return result

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
        """Create a single line item payment-mode checkout session"""
        product_data: Dict[str, Any] = {"name": product_name}
        if description:
            product_data["description"] = description

        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expiry_seconds)
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": product_data,
                        "unit_amount": amount_minor_units,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "expires_at": int(expires_at.timestamp()),
        }
        if customer_email:
            params["customer_email"] = customer_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        session = self._call("create_session", stripe.checkout.Session.create, **params)

        self.logger.info(
            f"Created checkout session {session.id}",
            extra={"session_id": session.id, "amount": amount_minor_units, "currency": currency},
        )
        return CheckoutSessionResult(
            session_id=session.id,
            url=session.url,
            expires_at=_from_timestamp(getattr(session, "expires_at", None)) or expires_at,
        )

    def retrieve_session(self, session_id: str) -> SessionSnapshot:
        session = self._call("retrieve_session", stripe.checkout.Session.retrieve, id=session_id)

        payment_intent = getattr(session, "payment_intent", None)
        if payment_intent is not None and not isinstance(payment_intent, str):
            payment_intent = payment_intent.id

        customer_details = getattr(session, "customer_details", None)
        customer_email = getattr(session, "customer_email", None)
        if not customer_email and customer_details is not None:
            customer_email = getattr(customer_details, "email", None)

        metadata = getattr(session, "metadata", None)
        return SessionSnapshot(
            session_id=session.id,
            status=getattr(session, "status", None),
            payment_status=getattr(session, "payment_status", None),
            payment_intent_id=payment_intent,
            amount_total=getattr(session, "amount_total", None),
            currency=getattr(session, "currency", None),
            customer_email=customer_email,
            expires_at=_from_timestamp(getattr(session, "expires_at", None)),
            metadata=dict(metadata) if metadata else {},
        )

    def expire_session(self, session_id: str) -> None:
        self._call("expire_session", stripe.checkout.Session.expire, session=session_id)
        self.logger.info(f"Expired checkout session {session_id}", extra={"session_id": session_id})

    def create_refund(
        self,
        payment_intent_id: str,
        reason: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> RefundResult:
        refund = self._call(
            "create_refund",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            reason=reason,
            metadata=metadata or {},
        )
        self.logger.info(
            f"Created refund {refund.id} for {payment_intent_id}",
            extra={"refund_id": refund.id, "refund_status": refund.status},
        )
        return RefundResult(refund_id=refund.id, status=refund.status)
