"""
D3 Payments Models

Payment records for offer checkouts, correlated with the processor by
checkout session id and payment intent id.
"""
import enum

from sqlalchemy import Column, ForeignKey, Index, Numeric, String, Text, text

from d2_offers.models import Currency
from database.base import Base, DatabaseAgnosticEnum, UTCDateTime, generate_uuid, utcnow


class PaymentStatus(str, enum.Enum):
    """Payment lifecycle status"""

    PENDING = "pending"  # Checkout session created, awaiting payment
    SUCCEEDED = "succeeded"  # Processor confirmed the charge
    FAILED = "failed"  # Payment attempt failed
    EXPIRED = "expired"  # Checkout session expired unpaid
    REFUNDED = "refunded"  # Charge refunded in full


# A new payment may not be created for an offer with one of these
ACTIVE_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.SUCCEEDED)

_ACTIVE_PAYMENT_CLAUSE = text("status IN ('pending', 'succeeded')")


class Payment(Base):
    """One checkout attempt for an offer"""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    offer_id = Column(String(64), ForeignKey("offers.id"), nullable=False, index=True)
    buyer_id = Column(String(64), nullable=False, index=True)
    seller_id = Column(String(64), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(DatabaseAgnosticEnum(Currency), nullable=False)
    status = Column(DatabaseAgnosticEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    # Processor correlation
    checkout_session_id = Column(String(255), unique=True, index=True, nullable=False)
    stripe_payment_intent_id = Column(String(255), unique=True, index=True)
    refund_id = Column(String(255))
    session_url = Column(Text)
    session_expires_at = Column(UTCDateTime)

    failure_reason = Column(Text)
    refund_reason = Column(Text)

    paid_at = Column(UTCDateTime)
    failed_at = Column(UTCDateTime)
    expired_at = Column(UTCDateTime)
    refunded_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        # At most one pending or succeeded payment per offer
        Index(
            "uq_payments_active_offer",
            "offer_id",
            unique=True,
            sqlite_where=_ACTIVE_PAYMENT_CLAUSE,
            postgresql_where=_ACTIVE_PAYMENT_CLAUSE,
        ),
        Index("idx_payments_buyer_status", "buyer_id", "status"),
        Index("idx_payments_seller_status", "seller_id", "status"),
    )

    def __repr__(self):
        return f"<Payment(id={self.id}, offer_id={self.offer_id}, status={self.status})>"


class ProcessedWebhookEvent(Base):
    """Webhook event ids that were applied successfully"""

    __tablename__ = "webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False)
    processed_at = Column(UTCDateTime, default=utcnow, nullable=False)
