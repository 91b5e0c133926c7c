"""
D3 Payments Webhook Handlers

Handlers for checkout session, payment intent and charge events. Every
transition is conditional and monotone, so a replayed or reordered event
either moves a record forward or leaves it alone.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from core.exceptions import ConcurrentModificationError
from core.logging import get_logger
from d2_offers.models import Offer, OfferStatus
from d2_offers.state_machine import REFUND_CANCELLABLE_STATUSES
from d2_offers.store import OfferStore
from database.base import utcnow

from .models import Payment, PaymentStatus
from .store import PaymentStore

logger = get_logger(__name__, domain="d3")

# A payment the processor reports as paid may come from any unsettled status
SUCCEEDABLE_FROM = (PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.EXPIRED)

# Offers already past the payment step
ADVANCED_OFFER_STATUSES = (
    OfferStatus.IN_PROGRESS,
    OfferStatus.DELIVERED,
    OfferStatus.COMPLETED,
    OfferStatus.DISPUTED,
)


def _result(status: str, **fields: Any) -> Dict[str, Any]:
    result = {"success": True, "status": status, "reconciliation_required": False}
    result.update(fields)
    return result


class BaseWebhookHandler:
    """Shared lookups and transitions for webhook handlers"""

    def __init__(self, session: Session, payments: PaymentStore, offers: OfferStore):
        self.session = session
        self.payments = payments
        self.offers = offers
        # Records changed by this handler, notified after commit
        self.changed_payments: List[str] = []
        self.changed_offers: List[str] = []

    def _payment_for_intent(self, intent_id: Optional[str], metadata: Dict[str, Any]) -> Optional[Payment]:
        """Find a payment by intent id, falling back to ids carried in metadata"""
        payment = None
        if intent_id:
            payment = self.payments.get_by_payment_intent(self.session, intent_id)
        if payment is None and metadata.get("paymentId"):
            payment = self.payments.get(self.session, metadata["paymentId"])
        session_id = metadata.get("checkoutSessionId") or metadata.get("checkout_session_id")
        if payment is None and session_id:
            payment = self.payments.get_by_session_id(self.session, session_id)
        return payment

    def _transition(self, payment: Payment, allowed_from, target: PaymentStatus, **values: Any) -> bool:
        changed = self.payments.transition(self.session, payment.id, allowed_from, target, **values)
        self.session.refresh(payment)
        if changed:
            self.changed_payments.append(payment.id)
            logger.info(
                f"Payment {payment.id} -> {target.value}",
                extra={"payment_id": payment.id, "offer_id": payment.offer_id, "payment_status": target.value},
            )
        return changed

    def _mark_succeeded(self, payment: Payment, intent_id: Optional[str]) -> bool:
        values: Dict[str, Any] = {"paid_at": utcnow(), "failure_reason": None}
        if intent_id and not payment.stripe_payment_intent_id:
            values["stripe_payment_intent_id"] = intent_id
        return self._transition(payment, SUCCEEDABLE_FROM, PaymentStatus.SUCCEEDED, **values)

    def _advance_offer(self, payment: Payment) -> bool:
        """
        Start work on the offer a settled payment belongs to.

        Returns True when reconciliation is required because the offer is
        no longer waiting for this payment.
        """
        offer = self.session.get(Offer, payment.offer_id)
        if offer is None:
            logger.warning(f"Payment {payment.id} references missing offer {payment.offer_id}")
            return True
        self.session.refresh(offer)

        if offer.status in ADVANCED_OFFER_STATUSES:
            return False

        if offer.status != OfferStatus.ACCEPTED:
            logger.warning(
                f"Payment {payment.id} succeeded but offer {offer.id} is {offer.status.value}",
                extra={"payment_id": payment.id, "offer_id": offer.id, "offer_status": offer.status.value},
            )
            return True

        try:
            self.offers.transition(
                self.session,
                offer.id,
                OfferStatus.ACCEPTED,
                OfferStatus.IN_PROGRESS,
                started_at=utcnow(),
            )
        except ConcurrentModificationError:
            logger.warning(
                f"Offer {offer.id} changed while applying payment {payment.id}",
                extra={"payment_id": payment.id, "offer_id": offer.id},
            )
            return True

        self.changed_offers.append(offer.id)
        return False

    def _cancel_offer_after_refund(self, payment: Payment) -> None:
        offer = self.session.get(Offer, payment.offer_id)
        if offer is None:
            return
        self.session.refresh(offer)
        if offer.status not in REFUND_CANCELLABLE_STATUSES:
            return
        self.offers.transition(
            self.session,
            offer.id,
            offer.status,
            OfferStatus.CANCELLED,
            cancelled_at=utcnow(),
        )
        self.changed_offers.append(offer.id)


class CheckoutSessionHandler(BaseWebhookHandler):
    """Handler for checkout session events"""

    def _payment_for_session(self, checkout: Dict[str, Any]) -> Optional[Payment]:
        session_id = checkout.get("id")
        if not session_id:
            return None
        return self.payments.get_by_session_id(self.session, session_id)

    def handle_session_completed(self, checkout: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        payment = self._payment_for_session(checkout)
        if payment is None:
            logger.warning(f"No payment for checkout session {checkout.get('id')} ({event_id})")
            return _result("ignored", reason="No matching payment")

        intent_id = checkout.get("payment_intent")
        if checkout.get("payment_status") == "unpaid":
            # Delayed payment methods settle later through async_payment_succeeded
            if intent_id and not payment.stripe_payment_intent_id:
                self.payments.transition(
                    self.session,
                    payment.id,
                    [PaymentStatus.PENDING],
                    PaymentStatus.PENDING,
                    stripe_payment_intent_id=intent_id,
                )
            return _result("ignored", reason="Awaiting asynchronous payment", payment_id=payment.id)

        return self._settle(payment, intent_id)

    def handle_async_payment_succeeded(self, checkout: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        payment = self._payment_for_session(checkout)
        if payment is None:
            logger.warning(f"No payment for checkout session {checkout.get('id')} ({event_id})")
            return _result("ignored", reason="No matching payment")
        return self._settle(payment, checkout.get("payment_intent"))

    def handle_session_expired(self, checkout: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        payment = self._payment_for_session(checkout)
        if payment is None:
            logger.warning(f"No payment for checkout session {checkout.get('id')} ({event_id})")
            return _result("ignored", reason="No matching payment")

        changed = self._transition(payment, [PaymentStatus.PENDING], PaymentStatus.EXPIRED, expired_at=utcnow())
        return _result("completed", payment_id=payment.id, payment_changed=changed)

    def handle_async_payment_failed(self, checkout: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        payment = self._payment_for_session(checkout)
        if payment is None:
            logger.warning(f"No payment for checkout session {checkout.get('id')} ({event_id})")
            return _result("ignored", reason="No matching payment")

        changed = self._transition(
            payment,
            [PaymentStatus.PENDING],
            PaymentStatus.FAILED,
            failed_at=utcnow(),
            failure_reason="Asynchronous payment failed",
        )
        return _result("completed", payment_id=payment.id, payment_changed=changed)

    def _settle(self, payment: Payment, intent_id: Optional[str]) -> Dict[str, Any]:
        changed = self._mark_succeeded(payment, intent_id)
        if payment.status != PaymentStatus.SUCCEEDED:
            # Refunded payments never move back
            return _result("completed", payment_id=payment.id, payment_changed=False)

        reconciliation_required = self._advance_offer(payment)
        return _result(
            "completed",
            payment_id=payment.id,
            payment_changed=changed,
            reconciliation_required=reconciliation_required,
        )


class PaymentIntentHandler(BaseWebhookHandler):
    """Handler for payment intent events"""

    def handle_payment_succeeded(self, intent: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        payment = self._payment_for_intent(intent.get("id"), intent.get("metadata") or {})
        if payment is None:
            logger.info(f"No payment for payment intent {intent.get('id')} ({event_id})")
            return _result("ignored", reason="No matching payment")

        changed = self._mark_succeeded(payment, intent.get("id"))
        return _result("completed", payment_id=payment.id, payment_changed=changed)

    def handle_payment_failed(self, intent: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        payment = self._payment_for_intent(intent.get("id"), intent.get("metadata") or {})
        if payment is None:
            logger.info(f"No payment for payment intent {intent.get('id')} ({event_id})")
            return _result("ignored", reason="No matching payment")

        error = intent.get("last_payment_error") or {}
        values: Dict[str, Any] = {
            "failed_at": utcnow(),
            "failure_reason": error.get("message") or "Payment failed",
        }
        if intent.get("id") and not payment.stripe_payment_intent_id:
            values["stripe_payment_intent_id"] = intent["id"]

        changed = self._transition(payment, [PaymentStatus.PENDING], PaymentStatus.FAILED, **values)
        return _result("completed", payment_id=payment.id, payment_changed=changed)


class ChargeHandler(BaseWebhookHandler):
    """Handler for charge events"""

    def handle_charge_refunded(self, charge: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        payment = self._payment_for_intent(charge.get("payment_intent"), charge.get("metadata") or {})
        if payment is None:
            logger.info(f"No payment for refunded charge {charge.get('id')} ({event_id})")
            return _result("ignored", reason="No matching payment")

        if not charge.get("refunded"):
            return _result("ignored", reason="Partial refund", payment_id=payment.id)

        refunds = (charge.get("refunds") or {}).get("data") or []
        values: Dict[str, Any] = {"refunded_at": utcnow()}
        if refunds and not payment.refund_id:
            values["refund_id"] = refunds[0].get("id")

        changed = self._transition(payment, [PaymentStatus.SUCCEEDED], PaymentStatus.REFUNDED, **values)
        if payment.status == PaymentStatus.REFUNDED:
            self._cancel_offer_after_refund(payment)
        return _result("completed", payment_id=payment.id, payment_changed=changed)
