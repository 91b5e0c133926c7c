"""
Conversation directory backed by the conversations table
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.logging import get_logger

from .models import Conversation

logger = get_logger(__name__, domain="d1")


class ConversationDirectory:
    """Resolves conversations and their participants"""

    def get(self, session: Session, conversation_id: str) -> Optional[Conversation]:
        return session.get(Conversation, conversation_id)

    def is_participant(self, session: Session, conversation_id: str, user_id: str) -> bool:
        conversation = self.get(session, conversation_id)
        return conversation is not None and conversation.has_participant(user_id)

    def find_or_create_conversation(self, session: Session, seller_id: str, buyer_id: str) -> Conversation:
        """
        Return the conversation between seller and buyer, creating it if needed.

        The row is committed on its own so a concurrent creator hitting the
        unique constraint can fall back to reading the winner's row.
        """
        existing = self._find(session, seller_id, buyer_id)
        if existing is not None:
            return existing

        conversation = Conversation(seller_id=seller_id, buyer_id=buyer_id)
        session.add(conversation)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            existing = self._find(session, seller_id, buyer_id)
            if existing is None:
                raise
            return existing

        logger.info(
            f"Created conversation {conversation.id}",
            extra={"conversation_id": conversation.id, "seller_id": seller_id, "buyer_id": buyer_id},
        )
        return conversation

    def _find(self, session: Session, seller_id: str, buyer_id: str) -> Optional[Conversation]:
        stmt = select(Conversation).where(
            Conversation.seller_id == seller_id,
            Conversation.buyer_id == buyer_id,
        )
        return session.execute(stmt).scalar_one_or_none()
