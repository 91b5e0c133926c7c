"""
D3 Payments Webhook Processor

Verifies processor webhooks against the raw request body, dispatches them
to the event handlers and records which events were applied. Delivery is
at-least-once and unordered, so each event is handled in isolation and
every transition it makes is idempotent.
"""
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import sessionmaker

from core.config import Settings, get_settings
from core.logging import get_logger
from core.metrics import metrics
from d0_gateway.base import CheckoutGateway
from d2_offers.models import Offer
from d2_offers.schemas import offer_payload
from d2_offers.store import OfferStore
from d4_notifications.relay import OFFER_UPDATED, PAYMENT_UPDATED, NotificationRelay, conversation_room, user_room

from .models import Payment
from .schemas import payment_payload
from .store import PaymentStore
from .webhook_handlers import BaseWebhookHandler, ChargeHandler, CheckoutSessionHandler, PaymentIntentHandler

logger = get_logger(__name__, domain="d3")


class WebhookEventType(Enum):
    """Processor webhook event types we handle"""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
    CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"


class WebhookStatus(Enum):
    """Webhook processing status"""

    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"


# Handler class and method for each event type
DISPATCH: Dict[WebhookEventType, tuple] = {
    WebhookEventType.CHECKOUT_SESSION_COMPLETED: (CheckoutSessionHandler, "handle_session_completed"),
    WebhookEventType.CHECKOUT_SESSION_EXPIRED: (CheckoutSessionHandler, "handle_session_expired"),
    WebhookEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED: (
        CheckoutSessionHandler,
        "handle_async_payment_succeeded",
    ),
    WebhookEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED: (CheckoutSessionHandler, "handle_async_payment_failed"),
    WebhookEventType.PAYMENT_INTENT_SUCCEEDED: (PaymentIntentHandler, "handle_payment_succeeded"),
    WebhookEventType.PAYMENT_INTENT_FAILED: (PaymentIntentHandler, "handle_payment_failed"),
    WebhookEventType.CHARGE_REFUNDED: (ChargeHandler, "handle_charge_refunded"),
}


class WebhookProcessor:
    """
    Main webhook processor for payment events

    Signature verification happens before anything else touches the
    database; a bad signature raises SignatureInvalidError.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: CheckoutGateway,
        relay: NotificationRelay,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.relay = relay
        self.settings = settings or get_settings()
        self.payments = PaymentStore()
        self.offers = OfferStore()

    @property
    def failure_mode(self) -> str:
        return self.settings.webhook_failure_mode

    def process_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify, dispatch and record one webhook delivery.

        Returns a result dict with `status` completed, ignored or failed.
        Handler errors are caught and reported as failed.

        Raises:
            SignatureInvalidError: If the signature does not match the payload
        """
        event = self.gateway.verify_webhook(payload, signature)

        event_id = event.get("id")
        event_type = event.get("type")
        data_object = (event.get("data") or {}).get("object") or {}
        log = logger.with_context(event_id=event_id, event_type=event_type)

        try:
            known_type = WebhookEventType(event_type)
        except ValueError:
            log.info(f"Unhandled event type: {event_type}")
            metrics.track_webhook_event(str(event_type), WebhookStatus.IGNORED.value)
            return self._response(event_id, event_type, WebhookStatus.IGNORED, reason="Unhandled event type")

        handler_class, method_name = DISPATCH[known_type]

        with self.session_factory() as session:
            if event_id and self.payments.is_event_processed(session, event_id):
                log.info(f"Duplicate webhook event {event_id}")
                metrics.track_webhook_event(event_type, "duplicate")
                return self._response(event_id, event_type, WebhookStatus.IGNORED, reason="Duplicate event")

            handler: BaseWebhookHandler = handler_class(session, self.payments, self.offers)
            handle: Callable[[Dict[str, Any], str], Dict[str, Any]] = getattr(handler, method_name)

            try:
                result = handle(data_object, event_id)
                if event_id and result["status"] == WebhookStatus.COMPLETED.value:
                    self.payments.record_event(session, event_id, event_type, result["status"])
                session.commit()
            except Exception as e:
                session.rollback()
                log.exception(f"Webhook handler failed for {event_type}: {e}")
                metrics.track_webhook_event(event_type, WebhookStatus.FAILED.value)
                metrics.track_error(type(e).__name__, "d3")
                return self._response(event_id, event_type, WebhookStatus.FAILED, error=str(e))

            self._notify(session, handler)

        status = WebhookStatus(result["status"])
        if result.get("reconciliation_required"):
            log.warning(
                f"Payment {result.get('payment_id')} needs reconciliation",
                extra={"payment_id": result.get("payment_id")},
            )
        metrics.track_webhook_event(event_type, status.value)
        return self._response(
            event_id,
            event_type,
            status,
            reason=result.get("reason"),
            payment_id=result.get("payment_id"),
            reconciliation_required=result.get("reconciliation_required", False),
        )

    def _notify(self, session, handler: BaseWebhookHandler) -> None:
        for payment_id in dict.fromkeys(handler.changed_payments):
            payment = session.get(Payment, payment_id)
            payload = payment_payload(payment)
            for room in (user_room(payment.buyer_id), user_room(payment.seller_id)):
                self.relay.emit(room, PAYMENT_UPDATED, payload)

        for offer_id in dict.fromkeys(handler.changed_offers):
            offer = session.get(Offer, offer_id)
            session.refresh(offer)
            payload = offer_payload(offer)
            for room in (
                conversation_room(offer.conversation_id),
                user_room(offer.buyer_id),
                user_room(offer.seller_id),
            ):
                self.relay.emit(room, OFFER_UPDATED, payload)

    def _response(
        self,
        event_id: Optional[str],
        event_type: Optional[str],
        status: WebhookStatus,
        **fields: Any,
    ) -> Dict[str, Any]:
        response = {
            "success": status != WebhookStatus.FAILED,
            "handled": status == WebhookStatus.COMPLETED,
            "event_id": event_id,
            "event_type": event_type,
            "status": status.value,
            "reconciliation_required": False,
        }
        response.update(fields)
        return response
