"""
D2 Offers Lifecycle Controller

Applies user-driven offer transitions. Every mutation re-reads the offer,
checks the actor and the transition graph, then writes conditionally on
the status it read. Accepting an offer also mints a checkout session and
records a pending payment in the same transaction as the status change.
"""
from dataclasses import dataclass
from datetime import timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from core.auth import Actor
from core.config import Settings, get_settings
from core.exceptions import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidStateError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
)
from core.logging import get_logger
from core.metrics import metrics
from d0_gateway.base import CheckoutGateway, CheckoutSessionResult, to_minor_units
from d1_conversations.directory import ConversationDirectory
from d3_payments.models import Payment, PaymentStatus
from d3_payments.store import PaymentStore
from d4_notifications.relay import (
    NEW_OFFER,
    OFFER_UPDATED,
    NotificationRelay,
    conversation_room,
    user_room,
)
from database.base import generate_uuid, utcnow

from .lookup import Demo, NotFound, find_offer
from .models import DisputeReason, Offer, OfferStatus
from .schemas import MAX_PRICE, OfferCreateRequest, offer_payload
from .state_machine import TRANSITIONS, Party, parse_user_status, require_transition
from .store import OfferStore

USER_LIST_ROLES = ("all", "seller", "buyer")


@dataclass
class AcceptedOffer:
    """Result of accepting an offer or retrying its checkout"""

    offer: Offer
    payment: Payment
    session: CheckoutSessionResult


def parse_create_request(data: Union[OfferCreateRequest, Dict[str, Any]]) -> OfferCreateRequest:
    """Validate raw offer terms into a request model"""
    if isinstance(data, OfferCreateRequest):
        return data
    try:
        return OfferCreateRequest.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Invalid offer: {first['msg']}", field=field or None)


def check_terms(request: OfferCreateRequest, seller_id: str) -> None:
    """Range checks that hold regardless of how the request was built"""
    if request.buyer_id == seller_id:
        raise ValidationError("Seller and buyer must be different users", field="buyer_id")
    if not request.title or len(request.title) > 100:
        raise ValidationError("Title must be between 1 and 100 characters", field="title")
    if not request.description or len(request.description) > 1000:
        raise ValidationError("Description must be between 1 and 1000 characters", field="description")
    if request.price <= 0:
        raise ValidationError("Price must be greater than zero", field="price")
    if request.price > MAX_PRICE:
        raise ValidationError(f"Price cannot exceed {MAX_PRICE}", field="price")
    if request.price.as_tuple().exponent < -2:
        raise ValidationError("Price cannot have more than 2 decimal places", field="price")
    if not 1 <= request.delivery_time_days <= 365:
        raise ValidationError("Delivery time must be between 1 and 365 days", field="delivery_time_days")
    if request.revisions < 0:
        raise ValidationError("Revisions cannot be negative", field="revisions")


class OfferLifecycleController:
    """Legal-transition enforcement and checkout coupling for offers"""

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: CheckoutGateway,
        relay: NotificationRelay,
        directory: Optional[ConversationDirectory] = None,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.relay = relay
        self.directory = directory or ConversationDirectory()
        self.settings = settings or get_settings()
        self.offers = OfferStore()
        self.payments = PaymentStore()
        self.logger = get_logger("d2_offers.lifecycle", domain="d2")

    # Creation

    def create_offer(self, seller_id: str, request: Union[OfferCreateRequest, Dict[str, Any]]) -> Offer:
        request = parse_create_request(request)
        check_terms(request, seller_id)

        now = utcnow()
        expires_at = request.expires_at
        if expires_at is None:
            expires_at = now + timedelta(days=self.settings.offer_expiry_days)
        elif expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= now:
            raise ValidationError("Offer expiry must be in the future", field="expires_at")

        with self.session_factory() as session:
            if request.conversation_id:
                conversation = self.directory.get(session, request.conversation_id)
                if conversation is None:
                    raise NotFoundError("Conversation", request.conversation_id)
                if not (conversation.has_participant(seller_id) and conversation.has_participant(request.buyer_id)):
                    raise AuthorizationError(
                        "Seller and buyer must both belong to the conversation",
                        user_id=seller_id,
                        conversation_id=conversation.id,
                    )
            else:
                conversation = self.directory.find_or_create_conversation(session, seller_id, request.buyer_id)

            offer = Offer(
                conversation_id=conversation.id,
                seller_id=seller_id,
                buyer_id=request.buyer_id,
                title=request.title,
                description=request.description,
                price=request.price,
                currency=request.currency,
                delivery_time_days=request.delivery_time_days,
                revisions=request.revisions,
                requirements=list(request.requirements),
                inclusions=list(request.inclusions),
                status=OfferStatus.SENT,
                sent_at=now,
                expires_at=expires_at,
            )
            self.offers.add(session, offer)
            session.commit()
            session.refresh(offer)

        metrics.track_offer_transition(OfferStatus.DRAFT.value, OfferStatus.SENT.value)
        self.logger.info(
            f"Offer {offer.id} sent",
            extra={"offer_id": offer.id, "seller_id": seller_id, "buyer_id": offer.buyer_id},
        )

        payload = offer_payload(offer)
        self.relay.emit(user_room(offer.buyer_id), NEW_OFFER, payload)
        self.relay.emit(conversation_room(offer.conversation_id), OFFER_UPDATED, payload)
        return offer

    # Buyer actions

    def accept_offer(self, offer_id: str, actor: Actor) -> AcceptedOffer:
        with self.session_factory() as session:
            lookup = find_offer(session, offer_id, actor.user_id, self.settings.enable_demo_offers)
            if isinstance(lookup, Demo):
                raise ValidationError("Demo offers cannot be accepted", field="offer_id")
            offer = self._require_found(lookup)

            if actor.user_id != offer.buyer_id:
                raise AuthorizationError("Only the buyer can accept this offer", user_id=actor.user_id)
            require_transition(offer.status, OfferStatus.ACCEPTED, Party.BUYER)
            self._require_not_expired(offer)
            self._require_no_active_payment(session, offer)

            return self._checkout(session, offer, OfferStatus.SENT, OfferStatus.ACCEPTED)

    def reject_offer(self, offer_id: str, actor: Actor) -> Offer:
        with self.session_factory() as session:
            lookup = find_offer(session, offer_id, actor.user_id, self.settings.enable_demo_offers)
            if isinstance(lookup, Demo):
                return self._demo_copy(lookup.offer, OfferStatus.REJECTED, rejected_at=utcnow())
            offer = self._require_found(lookup)

            if actor.user_id != offer.buyer_id:
                raise AuthorizationError("Only the buyer can reject this offer", user_id=actor.user_id)
            require_transition(offer.status, OfferStatus.REJECTED, Party.BUYER)

            return self._apply(session, offer, OfferStatus.REJECTED, rejected_at=utcnow())

    def retry_checkout(self, offer_id: str, actor: Actor) -> AcceptedOffer:
        """
        Mint a fresh checkout session for an accepted offer whose previous
        session expired or failed without payment.
        """
        with self.session_factory() as session:
            lookup = find_offer(session, offer_id, actor.user_id, self.settings.enable_demo_offers)
            if isinstance(lookup, Demo):
                raise ValidationError("Demo offers cannot be paid", field="offer_id")
            offer = self._require_found(lookup)

            if actor.user_id != offer.buyer_id:
                raise AuthorizationError("Only the buyer can pay for this offer", user_id=actor.user_id)
            if offer.status != OfferStatus.ACCEPTED:
                raise InvalidStateError(
                    f"Checkout can only be retried for accepted offers, offer is {offer.status.value}",
                    current_status=offer.status,
                )
            self._require_not_expired(offer)
            self._require_no_active_payment(session, offer)

            return self._checkout(session, offer, OfferStatus.ACCEPTED, OfferStatus.ACCEPTED)

    # Seller actions

    def cancel_offer(self, offer_id: str, actor: Actor) -> Offer:
        with self.session_factory() as session:
            lookup = find_offer(session, offer_id, actor.user_id, self.settings.enable_demo_offers)
            if isinstance(lookup, Demo):
                return self._demo_copy(lookup.offer, OfferStatus.CANCELLED, cancelled_at=utcnow())
            offer = self._require_found(lookup)

            if actor.user_id != offer.seller_id:
                raise AuthorizationError("Only the seller can cancel this offer", user_id=actor.user_id)
            require_transition(offer.status, OfferStatus.CANCELLED, Party.SELLER)

            open_session_id = offer.payment_session_id if offer.status == OfferStatus.ACCEPTED else None
            offer = self._apply(session, offer, OfferStatus.CANCELLED, cancelled_at=utcnow())

        if open_session_id:
            self._close_session(open_session_id)
        return offer

    # Work progress

    def update_offer_status(
        self,
        offer_id: str,
        new_status: Any,
        actor: Actor,
        message: Optional[str] = None,
        reason: Optional[DisputeReason] = None,
        description: Optional[str] = None,
    ) -> Offer:
        target = parse_user_status(new_status)
        now = utcnow()

        values: Dict[str, Any] = {}
        if target == OfferStatus.DELIVERED:
            values = {"delivered_at": now, "delivery_message": message}
        elif target == OfferStatus.COMPLETED:
            values = {"completed_at": now}
        elif target == OfferStatus.DISPUTED:
            values = {
                "disputed_at": now,
                "dispute_reason": reason or DisputeReason.OTHER,
                "dispute_description": description,
                "disputed_by": actor.user_id,
            }

        with self.session_factory() as session:
            lookup = find_offer(session, offer_id, actor.user_id, self.settings.enable_demo_offers)
            if isinstance(lookup, Demo):
                return self._demo_copy(lookup.offer, target, **values)
            offer = self._require_found(lookup)

            if actor.user_id == offer.seller_id:
                party = Party.SELLER
            elif actor.user_id == offer.buyer_id:
                party = Party.BUYER
            else:
                raise AuthorizationError("Only the seller or buyer can update this offer", user_id=actor.user_id)

            edge = TRANSITIONS.get((offer.status, target))
            if edge is not None and party not in edge:
                raise AuthorizationError(
                    f"The {party.value} cannot mark this offer {target.value}",
                    user_id=actor.user_id,
                )
            require_transition(offer.status, target, party)

            return self._apply(session, offer, target, **values)

    # Queries

    def get_offer(self, offer_id: str, actor: Actor) -> Offer:
        with self.session_factory() as session:
            lookup = find_offer(session, offer_id, actor.user_id, self.settings.enable_demo_offers)
            if isinstance(lookup, Demo):
                return lookup.offer
            offer = self._require_found(lookup)
            if not (actor.is_admin or offer.is_party(actor.user_id)):
                raise AuthorizationError("Not a party to this offer", user_id=actor.user_id)
            return offer

    def list_offers_for_conversation(self, conversation_id: str, actor: Actor) -> List[Offer]:
        with self.session_factory() as session:
            conversation = self.directory.get(session, conversation_id)
            if conversation is None:
                raise NotFoundError("Conversation", conversation_id)
            if not (actor.is_admin or conversation.has_participant(actor.user_id)):
                raise AuthorizationError("Not a participant in this conversation", user_id=actor.user_id)
            return self.offers.list_for_conversation(session, conversation_id)

    def list_offers_for_user(self, actor: Actor, role: str = "all", active_only: bool = False) -> List[Offer]:
        if role not in USER_LIST_ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(USER_LIST_ROLES)}", field="role")
        with self.session_factory() as session:
            return self.offers.list_for_user(session, actor.user_id, role=role, active_only=active_only)

    # Internals

    def _require_found(self, lookup) -> Offer:
        if isinstance(lookup, NotFound):
            raise NotFoundError("Offer", lookup.offer_id)
        return lookup.offer

    def _require_not_expired(self, offer: Offer) -> None:
        if offer.is_expired():
            raise InvalidStateError(
                f"Offer has expired (expired at {offer.expires_at.isoformat()})",
                current_status=offer.status,
                expires_at=offer.expires_at.isoformat(),
            )

    def _require_no_active_payment(self, session: Session, offer: Offer) -> None:
        active = self.payments.get_active_for_offer(session, offer.id)
        if active is not None:
            raise InvalidStateError(
                f"Offer already has a {active.status.value} payment",
                current_status=offer.status,
                payment_id=active.id,
            )

    def _apply(self, session: Session, offer: Offer, target: OfferStatus, **values: Any) -> Offer:
        """Conditionally move `offer` to `target`, commit and notify"""
        current = offer.status
        try:
            self.offers.transition(session, offer.id, current, target, **values)
            session.commit()
        except ConcurrentModificationError:
            session.rollback()
            raise
        session.refresh(offer)

        self.logger.info(
            f"Offer {offer.id} moved {current.value} -> {target.value}",
            extra={"offer_id": offer.id, "from_status": current.value, "to_status": target.value},
        )
        self._notify(offer)
        return offer

    def _checkout(self, session: Session, offer: Offer, expected: OfferStatus, target: OfferStatus) -> AcceptedOffer:
        """
        Mint a checkout session, then record the pending payment and the
        offer transition in one transaction.
        """
        offer_id = offer.id
        previous_session_id = offer.payment_session_id
        currency = offer.currency.value
        payment_id = generate_uuid()
        # Nothing is pending; ends the read transaction before the network call
        session.commit()

        checkout = self.gateway.create_session(
            amount_minor_units=to_minor_units(offer.price, currency),
            currency=currency,
            metadata={
                "offerId": offer_id,
                "buyerId": offer.buyer_id,
                "sellerId": offer.seller_id,
                "paymentId": payment_id,
            },
            success_url=f"{self.settings.client_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.settings.client_url}/payment/cancel?offer_id={offer_id}",
            expiry_seconds=self.settings.checkout_session_expiry_minutes * 60,
            product_name=offer.title,
            description=offer.description[:500],
            idempotency_key=f"checkout-session-{payment_id}",
        )

        now = utcnow()
        payment = Payment(
            id=payment_id,
            offer_id=offer_id,
            buyer_id=offer.buyer_id,
            seller_id=offer.seller_id,
            amount=offer.price,
            currency=offer.currency,
            status=PaymentStatus.PENDING,
            checkout_session_id=checkout.session_id,
            session_url=checkout.url,
            session_expires_at=checkout.expires_at,
        )

        conditions = [Offer.expires_at > now]
        values: Dict[str, Any] = {"payment_session_id": checkout.session_id}
        if target == OfferStatus.ACCEPTED and expected == OfferStatus.SENT:
            values["accepted_at"] = now
        else:
            if previous_session_id is None:
                conditions.append(Offer.payment_session_id.is_(None))
            else:
                conditions.append(Offer.payment_session_id == previous_session_id)

        try:
            self.payments.add(session, payment)
            self.offers.transition(session, offer_id, expected, target, *conditions, **values)
            session.commit()
        except (ConcurrentModificationError, IntegrityError) as e:
            session.rollback()
            self._close_session(checkout.session_id)
            if isinstance(e, IntegrityError):
                self.logger.warning(f"Active payment already exists for offer {offer_id}")
                raise ConcurrentModificationError("Offer", offer_id, expected)
            raise

        session.refresh(offer)
        session.refresh(payment)

        self.logger.info(
            f"Checkout session {checkout.session_id} opened for offer {offer_id}",
            extra={"offer_id": offer_id, "payment_id": payment_id, "session_id": checkout.session_id},
        )
        self._notify(offer)
        return AcceptedOffer(offer=offer, payment=payment, session=checkout)

    def _close_session(self, session_id: str) -> None:
        """Best effort: stop an orphaned checkout session from being paid"""
        try:
            self.gateway.expire_session(session_id)
        except MarketplaceError as e:
            self.logger.warning(f"Could not expire checkout session {session_id}: {e.message}")

    def _demo_copy(self, offer: Offer, target: OfferStatus, **values: Any) -> Offer:
        offer.status = target
        for key, value in values.items():
            setattr(offer, key, value)
        return offer

    def _notify(self, offer: Offer) -> None:
        payload = offer_payload(offer)
        for room in (
            conversation_room(offer.conversation_id),
            user_room(offer.buyer_id),
            user_room(offer.seller_id),
        ):
            self.relay.emit(room, OFFER_UPDATED, payload)
