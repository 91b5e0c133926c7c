"""
D2 Offers Models

Custom offers a seller sends to a buyer inside a conversation.
"""
import enum

from sqlalchemy import JSON, CheckConstraint, Column, Index, Integer, Numeric, String, Text

from database.base import Base, DatabaseAgnosticEnum, UTCDateTime, generate_uuid, utcnow


class OfferStatus(str, enum.Enum):
    """Offer lifecycle status"""

    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"
    PAID = "paid"  # Legacy value, never produced


class Currency(str, enum.Enum):
    USD = "usd"
    EUR = "eur"
    GBP = "gbp"
    CAD = "cad"
    AUD = "aud"


class DisputeReason(str, enum.Enum):
    QUALITY = "quality"
    LATE_DELIVERY = "late_delivery"
    NOT_AS_DESCRIBED = "not_as_described"
    OTHER = "other"


class Offer(Base):
    """Priced, time-bounded proposal from a seller to a buyer"""

    __tablename__ = "offers"

    id = Column(String(64), primary_key=True, default=generate_uuid)
    conversation_id = Column(String(36), nullable=False, index=True)
    seller_id = Column(String(64), nullable=False)
    buyer_id = Column(String(64), nullable=False)

    # Terms
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(DatabaseAgnosticEnum(Currency), nullable=False, default=Currency.USD)
    delivery_time_days = Column(Integer, nullable=False)
    revisions = Column(Integer, nullable=False, default=1)
    requirements = Column(JSON, nullable=False, default=list)
    inclusions = Column(JSON, nullable=False, default=list)

    # Lifecycle
    status = Column(DatabaseAgnosticEnum(OfferStatus), nullable=False, default=OfferStatus.DRAFT)
    expires_at = Column(UTCDateTime, nullable=False)
    sent_at = Column(UTCDateTime)
    accepted_at = Column(UTCDateTime)
    rejected_at = Column(UTCDateTime)
    cancelled_at = Column(UTCDateTime)
    started_at = Column(UTCDateTime)
    delivered_at = Column(UTCDateTime)
    completed_at = Column(UTCDateTime)
    paid_at = Column(UTCDateTime)
    disputed_at = Column(UTCDateTime)

    # Payment linkage
    payment_session_id = Column(String(255), index=True)

    # Delivery and dispute details
    delivery_message = Column(Text)
    dispute_reason = Column(DatabaseAgnosticEnum(DisputeReason))
    dispute_description = Column(Text)
    disputed_by = Column(String(64))

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_offers_seller_status", "seller_id", "status"),
        Index("idx_offers_buyer_status", "buyer_id", "status"),
        Index("idx_offers_expires_at", "expires_at"),
        CheckConstraint("price > 0", name="check_offer_price_positive"),
        CheckConstraint(
            "delivery_time_days >= 1 AND delivery_time_days <= 365",
            name="check_offer_delivery_days",
        ),
        CheckConstraint("revisions >= 0", name="check_offer_revisions"),
    )

    def is_expired(self, now=None) -> bool:
        now = now or utcnow()
        return self.expires_at is not None and self.expires_at <= now

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.seller_id, self.buyer_id)

    def __repr__(self):
        return f"<Offer(id={self.id}, status={self.status}, price={self.price} {self.currency})>"
