"""
D1 Conversations Models

Minimal conversation directory. Messages live in the messaging service;
this table only records which seller and buyer share a conversation.
"""
from sqlalchemy import Column, String, UniqueConstraint

from database.base import Base, UTCDateTime, generate_uuid, utcnow


class Conversation(Base):
    """A seller/buyer pair that offers are exchanged within"""

    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    seller_id = Column(String(64), nullable=False, index=True)
    buyer_id = Column(String(64), nullable=False, index=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("seller_id", "buyer_id", name="uq_conversation_participants"),)

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.seller_id, self.buyer_id)

    def __repr__(self):
        return f"<Conversation(id={self.id}, seller_id={self.seller_id}, buyer_id={self.buyer_id})>"
