"""
D3 Payments Refunds

Full refunds of settled payments. The processor is asked first; only after
it accepts the refund are the payment and its offer updated locally, in one
transaction.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from core.auth import Actor
from core.exceptions import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    RefundFailedError,
)
from core.logging import get_logger
from core.metrics import metrics
from d0_gateway.base import CheckoutGateway
from d2_offers.models import Offer, OfferStatus
from d2_offers.schemas import offer_payload
from d2_offers.state_machine import REFUND_CANCELLABLE_STATUSES
from d2_offers.store import OfferStore
from d4_notifications.relay import OFFER_UPDATED, PAYMENT_UPDATED, NotificationRelay, conversation_room, user_room
from database.base import utcnow

from .models import Payment, PaymentStatus
from .schemas import payment_payload
from .store import PaymentStore

logger = get_logger(__name__, domain="d3")

# Reasons the processor accepts; anything else is stored locally only
PROCESSOR_REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")
DEFAULT_REFUND_REASON = "requested_by_customer"

# Local write attempts when the offer changes underneath the refund
WRITE_ATTEMPTS = 2


@dataclass
class RefundOutcome:
    refund_id: str
    refund_status: str
    payment: Payment
    offer: Optional[Offer]


class RefundService:
    """Refunds succeeded payments and cancels their offers"""

    def __init__(self, session_factory: sessionmaker, gateway: CheckoutGateway, relay: NotificationRelay):
        self.session_factory = session_factory
        self.gateway = gateway
        self.relay = relay
        self.payments = PaymentStore()
        self.offers = OfferStore()

    def refund_payment(self, payment_id: str, actor: Actor, reason: Optional[str] = None) -> RefundOutcome:
        """
        Refund a succeeded payment in full.

        Raises:
            NotFoundError: Unknown payment
            AuthorizationError: Actor is neither the seller of record nor an admin
            InvalidStateError: Payment is not succeeded
            RefundFailedError: The processor refused the refund; nothing changed
        """
        processor_reason = reason if reason in PROCESSOR_REFUND_REASONS else DEFAULT_REFUND_REASON

        with self.session_factory() as session:
            payment = self.payments.get(session, payment_id)
            if payment is None:
                raise NotFoundError("Payment", payment_id)
            if not (actor.is_admin or actor.user_id == payment.seller_id):
                raise AuthorizationError("Only the seller or an admin can refund this payment", user_id=actor.user_id)
            if payment.status != PaymentStatus.SUCCEEDED:
                raise InvalidStateError(
                    f"Only succeeded payments can be refunded, payment is {payment.status.value}",
                    current_status=payment.status,
                )
            if not payment.stripe_payment_intent_id:
                raise InvalidStateError(
                    "Payment has no payment intent to refund",
                    current_status=payment.status,
                )
            intent_id = payment.stripe_payment_intent_id
            session.commit()

            try:
                refund = self.gateway.create_refund(
                    intent_id,
                    processor_reason,
                    metadata={"paymentId": payment.id, "offerId": payment.offer_id},
                )
            except MarketplaceError as e:
                metrics.track_refund("failed")
                logger.error(
                    f"Refund failed for payment {payment_id}: {e.message}",
                    extra={"payment_id": payment_id, "error_code": e.error_code},
                )
                raise RefundFailedError(payment_id, e.message, gateway_error=e.error_code)

            offer = self._record_refund(session, payment, refund.refund_id, reason or processor_reason)

        metrics.track_refund("succeeded")
        logger.info(
            f"Payment {payment_id} refunded",
            extra={"payment_id": payment_id, "refund_id": refund.refund_id, "refund_status": refund.status},
        )
        self._notify(payment, offer)
        return RefundOutcome(refund_id=refund.refund_id, refund_status=refund.status, payment=payment, offer=offer)

    def _record_refund(self, session: Session, payment: Payment, refund_id: str, reason: str) -> Optional[Offer]:
        """Payment succeeded -> refunded, then cascade the offer to cancelled"""
        for attempt in range(1, WRITE_ATTEMPTS + 1):
            now = utcnow()
            try:
                self.payments.transition(
                    session,
                    payment.id,
                    [PaymentStatus.SUCCEEDED],
                    PaymentStatus.REFUNDED,
                    refunded_at=now,
                    refund_id=refund_id,
                    refund_reason=reason,
                )
                offer = session.get(Offer, payment.offer_id)
                if offer is not None:
                    session.refresh(offer)
                    if offer.status in REFUND_CANCELLABLE_STATUSES:
                        self.offers.transition(
                            session,
                            offer.id,
                            offer.status,
                            OfferStatus.CANCELLED,
                            cancelled_at=now,
                        )
                session.commit()
            except ConcurrentModificationError:
                session.rollback()
                if attempt == WRITE_ATTEMPTS:
                    raise
                continue

            session.refresh(payment)
            if offer is not None:
                session.refresh(offer)
            return offer

    def _notify(self, payment: Payment, offer: Optional[Offer]) -> None:
        payload = payment_payload(payment)
        for room in (user_room(payment.buyer_id), user_room(payment.seller_id)):
            self.relay.emit(room, PAYMENT_UPDATED, payload)

        if offer is not None:
            payload = offer_payload(offer)
            for room in (
                conversation_room(offer.conversation_id),
                user_room(offer.buyer_id),
                user_room(offer.seller_id),
            ):
                self.relay.emit(room, OFFER_UPDATED, payload)
