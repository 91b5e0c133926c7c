"""
Payment record persistence with conditional writes
"""
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.metrics import metrics
from database.base import utcnow

from .models import ACTIVE_PAYMENT_STATUSES, Payment, PaymentStatus, ProcessedWebhookEvent

logger = get_logger(__name__, domain="d3")


class PaymentStore:
    """Reads and conditional writes against the payments table"""

    def add(self, session: Session, payment: Payment) -> Payment:
        session.add(payment)
        session.flush()
        return payment

    def get(self, session: Session, payment_id: str) -> Optional[Payment]:
        return session.get(Payment, payment_id)

    def get_by_session_id(self, session: Session, checkout_session_id: str) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.checkout_session_id == checkout_session_id)
        return session.execute(stmt).scalar_one_or_none()

    def get_by_payment_intent(self, session: Session, payment_intent_id: str) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.stripe_payment_intent_id == payment_intent_id)
        return session.execute(stmt).scalar_one_or_none()

    def get_active_for_offer(self, session: Session, offer_id: str) -> Optional[Payment]:
        stmt = select(Payment).where(
            Payment.offer_id == offer_id,
            Payment.status.in_(list(ACTIVE_PAYMENT_STATUSES)),
        )
        return session.execute(stmt).scalars().first()

    def get_latest_for_offer(self, session: Session, offer_id: str) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.offer_id == offer_id).order_by(Payment.created_at.desc())
        return session.execute(stmt).scalars().first()

    def transition(
        self,
        session: Session,
        payment_id: str,
        allowed_from: Iterable[PaymentStatus],
        target: PaymentStatus,
        **values: Any,
    ) -> bool:
        """
        Move a payment to `target` if its status is one of `allowed_from`.

        Returns True if the row changed. The caller commits.
        """
        allowed = list(allowed_from)
        stmt = (
            update(Payment)
            .where(Payment.id == payment_id, Payment.status.in_(allowed))
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        changed = session.execute(stmt).rowcount == 1
        if not changed:
            metrics.track_payment_noop(target.value)
        return changed

    def list_for_user(
        self,
        session: Session,
        user_id: str,
        role: str = "all",
        status: Optional[PaymentStatus] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Payment], int]:
        """Return one page of a user's payments and the total count"""
        if role == "seller":
            condition = Payment.seller_id == user_id
        elif role == "buyer":
            condition = Payment.buyer_id == user_id
        else:
            condition = or_(Payment.seller_id == user_id, Payment.buyer_id == user_id)

        conditions = [condition]
        if status is not None:
            conditions.append(Payment.status == status)

        total = session.execute(select(func.count()).select_from(Payment).where(*conditions)).scalar_one()
        stmt = select(Payment).where(*conditions).order_by(Payment.created_at.desc()).offset(offset).limit(limit)
        return list(session.execute(stmt).scalars()), total

    # Webhook event ledger

    def is_event_processed(self, session: Session, event_id: str) -> bool:
        return session.get(ProcessedWebhookEvent, event_id) is not None

    def record_event(self, session: Session, event_id: str, event_type: str, status: str) -> None:
        session.merge(ProcessedWebhookEvent(event_id=event_id, event_type=event_type, status=status))
