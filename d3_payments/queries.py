"""
Read-side payment queries for buyers and sellers
"""
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from core.auth import Actor
from core.exceptions import AuthorizationError, NotFoundError, ValidationError
from d0_gateway.base import CheckoutGateway, SessionSnapshot
from d2_offers.models import Offer

from .models import Payment, PaymentStatus
from .store import PaymentStore

PAYMENT_LIST_ROLES = ("all", "seller", "buyer")
MAX_PAGE_SIZE = 100


@dataclass
class PaymentStatusView:
    snapshot: SessionSnapshot
    payment: Optional[Payment]


@dataclass
class PaymentPage:
    payments: List[Payment]
    total: int
    page: int
    limit: int

    @property
    def has_next_page(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


class PaymentQueryService:
    def __init__(self, session_factory: sessionmaker, gateway: CheckoutGateway):
        self.session_factory = session_factory
        self.gateway = gateway
        self.payments = PaymentStore()

    def get_payment_status(self, session_id: str, actor: Actor) -> PaymentStatusView:
        """Combine the processor's view of a checkout session with the stored payment"""
        with self.session_factory() as session:
            payment = self.payments.get_by_session_id(session, session_id)
        if payment is None:
            raise NotFoundError("Checkout session", session_id)
        self._require_party(payment, actor)

        snapshot = self.gateway.retrieve_session(session_id)
        return PaymentStatusView(snapshot=snapshot, payment=payment)

    def get_payment_for_offer(self, offer_id: str, actor: Actor) -> Payment:
        """Latest payment attempt for an offer"""
        with self.session_factory() as session:
            offer = session.get(Offer, offer_id)
            if offer is None:
                raise NotFoundError("Offer", offer_id)
            if not (actor.is_admin or offer.is_party(actor.user_id)):
                raise AuthorizationError("Not a party to this offer", user_id=actor.user_id)

            payment = self.payments.get_latest_for_offer(session, offer_id)
            if payment is None:
                raise NotFoundError("Payment for offer", offer_id)
            return payment

    def list_payments_for_user(
        self,
        actor: Actor,
        role: str = "all",
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> PaymentPage:
        if role not in PAYMENT_LIST_ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(PAYMENT_LIST_ROLES)}", field="role")
        if page < 1:
            raise ValidationError("Page must be at least 1", field="page")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")

        payment_status = None
        if status:
            try:
                payment_status = PaymentStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown payment status: {status}", field="status")

        with self.session_factory() as session:
            payments, total = self.payments.list_for_user(
                session,
                actor.user_id,
                role=role,
                status=payment_status,
                offset=(page - 1) * limit,
                limit=limit,
            )
        return PaymentPage(payments=payments, total=total, page=page, limit=limit)

    def _require_party(self, payment: Payment, actor: Actor) -> None:
        if not (actor.is_admin or actor.user_id in (payment.buyer_id, payment.seller_id)):
            raise AuthorizationError("Not a party to this payment", user_id=actor.user_id)
