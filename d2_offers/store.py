"""
Offer persistence with conditional writes

Status changes never overwrite blindly: each UPDATE carries the status the
caller read, and a zero row count means someone else got there first.
"""
from typing import Any, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from core.exceptions import ConcurrentModificationError
from core.logging import get_logger
from core.metrics import metrics
from database.base import utcnow

from .models import Offer, OfferStatus
from .state_machine import ACTIVE_STATUSES

logger = get_logger(__name__, domain="d2")


class OfferStore:
    """Reads and conditional writes against the offers table"""

    def add(self, session: Session, offer: Offer) -> Offer:
        session.add(offer)
        session.flush()
        return offer

    def get(self, session: Session, offer_id: str) -> Optional[Offer]:
        return session.get(Offer, offer_id)

    def transition(
        self,
        session: Session,
        offer_id: str,
        expected: OfferStatus,
        target: OfferStatus,
        *conditions: Any,
        **values: Any,
    ) -> None:
        """
        Move an offer from `expected` to `target` in the current transaction.

        Extra `conditions` are added to the WHERE clause. The caller commits.

        Raises:
            ConcurrentModificationError: If the row no longer matches
        """
        stmt = (
            update(Offer)
            .where(Offer.id == offer_id, Offer.status == expected, *conditions)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = session.execute(stmt)
        if result.rowcount != 1:
            metrics.track_conflict("offer")
            logger.warning(
                f"Conditional write lost for offer {offer_id}",
                extra={"offer_id": offer_id, "expected_status": expected.value, "target_status": target.value},
            )
            raise ConcurrentModificationError("Offer", offer_id, expected)

        metrics.track_offer_transition(expected.value, target.value)

    def list_for_conversation(self, session: Session, conversation_id: str) -> List[Offer]:
        stmt = select(Offer).where(Offer.conversation_id == conversation_id).order_by(Offer.created_at.desc())
        return list(session.execute(stmt).scalars())

    def list_for_user(self, session: Session, user_id: str, role: str = "all", active_only: bool = False) -> List[Offer]:
        if role == "seller":
            stmt = select(Offer).where(Offer.seller_id == user_id)
        elif role == "buyer":
            stmt = select(Offer).where(Offer.buyer_id == user_id)
        else:
            stmt = select(Offer).where(or_(Offer.seller_id == user_id, Offer.buyer_id == user_id))

        if active_only:
            awaiting_buyer = [OfferStatus.SENT, OfferStatus.ACCEPTED]
            working = [status for status in ACTIVE_STATUSES if status not in awaiting_buyer]
            stmt = stmt.where(
                or_(
                    Offer.status.in_(working),
                    and_(Offer.status.in_(awaiting_buyer), Offer.expires_at > utcnow()),
                )
            )

        return list(session.execute(stmt.order_by(Offer.created_at.desc())).scalars())

    def list_expired(self, session: Session, now=None) -> List[Offer]:
        """Offers still waiting on the buyer after their expiry"""
        now = now or utcnow()
        stmt = (
            select(Offer)
            .where(Offer.status.in_([OfferStatus.SENT, OfferStatus.ACCEPTED]), Offer.expires_at <= now)
            .order_by(Offer.expires_at)
        )
        return list(session.execute(stmt).scalars())
