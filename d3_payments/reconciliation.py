"""
Reconciliation of payments that got ahead of their offers

A payment can settle without its offer following: payment_intent.succeeded
does not touch the offer, and an offer that changed concurrently rejects
the webhook's conditional write. The reconciler finds such pairs and
applies the missing offer transition with the same conditional writes the
webhook handlers use.

Money captured against an offer that was already cancelled or rejected is
reported as needing a refund and never changed automatically.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from core.exceptions import ConcurrentModificationError
from core.logging import get_logger
from d2_offers.models import Offer, OfferStatus
from d2_offers.state_machine import REFUND_CANCELLABLE_STATUSES
from d2_offers.store import OfferStore
from database.base import utcnow

from .models import Payment, PaymentStatus

logger = get_logger(__name__, domain="d3")

# Offers that can no longer be fulfilled
CLOSED_OFFER_STATUSES = (OfferStatus.CANCELLED, OfferStatus.REJECTED)


@dataclass
class Skew:
    """A payment whose offer has not caught up"""

    payment_id: str
    offer_id: str
    payment_status: PaymentStatus
    offer_status: OfferStatus
    target_status: Optional[OfferStatus] = None

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "offer_id": self.offer_id,
            "payment_status": self.payment_status.value,
            "offer_status": self.offer_status.value,
            "target_status": self.target_status.value if self.target_status else None,
        }


@dataclass
class ReconciliationReport:
    found: List[Skew] = field(default_factory=list)
    repaired: List[Skew] = field(default_factory=list)
    failed: List[Skew] = field(default_factory=list)
    needs_refund: List[Skew] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "found": [s.to_dict() for s in self.found],
            "repaired": [s.to_dict() for s in self.repaired],
            "failed": [s.to_dict() for s in self.failed],
            "needs_refund": [s.to_dict() for s in self.needs_refund],
        }


class Reconciler:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.offers = OfferStore()

    def _settled_pairs(self):
        stmt = (
            select(Payment, Offer)
            .join(Offer, Offer.id == Payment.offer_id)
            .where(Payment.status.in_([PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED]))
            .order_by(Payment.created_at)
        )
        with self.session_factory() as session:
            return list(session.execute(stmt).tuples())

    def find_skew(self) -> List[Skew]:
        """Succeeded payments on accepted offers and refunded payments on live offers"""
        skews: List[Skew] = []
        for payment, offer in self._settled_pairs():
            if payment.status == PaymentStatus.SUCCEEDED and offer.status == OfferStatus.ACCEPTED:
                target = OfferStatus.IN_PROGRESS
            elif payment.status == PaymentStatus.REFUNDED and offer.status in REFUND_CANCELLABLE_STATUSES:
                target = OfferStatus.CANCELLED
            else:
                continue
            skews.append(Skew(payment.id, offer.id, payment.status, offer.status, target))
        return skews

    def find_stranded_payments(self) -> List[Skew]:
        """Succeeded payments whose offer was cancelled or rejected before the money arrived"""
        return [
            Skew(payment.id, offer.id, payment.status, offer.status)
            for payment, offer in self._settled_pairs()
            if payment.status == PaymentStatus.SUCCEEDED and offer.status in CLOSED_OFFER_STATUSES
        ]

    def repair(self, dry_run: bool = False) -> ReconciliationReport:
        report = ReconciliationReport(found=self.find_skew(), needs_refund=self.find_stranded_payments())
        for stranded in report.needs_refund:
            logger.warning(
                f"Payment {stranded.payment_id} succeeded on {stranded.offer_status.value} offer {stranded.offer_id}",
                extra={"offer_id": stranded.offer_id, "payment_id": stranded.payment_id},
            )
        if dry_run:
            return report

        for skew in report.found:
            values = {"started_at": utcnow()} if skew.target_status == OfferStatus.IN_PROGRESS else {"cancelled_at": utcnow()}
            with self.session_factory() as session:
                try:
                    self.offers.transition(session, skew.offer_id, skew.offer_status, skew.target_status, **values)
                    session.commit()
                except ConcurrentModificationError:
                    session.rollback()
                    report.failed.append(skew)
                    continue

            logger.info(
                f"Reconciled offer {skew.offer_id} to {skew.target_status.value}",
                extra={"offer_id": skew.offer_id, "payment_id": skew.payment_id},
            )
            report.repaired.append(skew)

        if report.found:
            logger.warning(
                f"Reconciliation found {len(report.found)} skewed offers, repaired {len(report.repaired)}",
            )
        return report
