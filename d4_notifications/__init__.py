"""
D4 Notifications - real-time relay for offer and payment events
"""
from .relay import (
    NEW_OFFER,
    OFFER_UPDATED,
    PAYMENT_UPDATED,
    InMemoryNotificationRelay,
    NotificationRelay,
    RedisNotificationRelay,
    build_relay,
    conversation_room,
    user_room,
)

__all__ = [
    "NEW_OFFER",
    "OFFER_UPDATED",
    "PAYMENT_UPDATED",
    "InMemoryNotificationRelay",
    "NotificationRelay",
    "RedisNotificationRelay",
    "build_relay",
    "conversation_room",
    "user_room",
]
