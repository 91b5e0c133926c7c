"""
D1 Conversations - directory of seller/buyer conversations
"""
from .directory import ConversationDirectory
from .models import Conversation

__all__ = ["Conversation", "ConversationDirectory"]
