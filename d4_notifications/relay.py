"""
Notification relay for real-time offer and payment updates

Delivery is best effort. A failed publish is logged and dropped so the
state change that triggered it is never rolled back or reported as failed.
"""
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import redis

from core.config import Settings, get_settings
from core.logging import get_logger

logger = get_logger(__name__, domain="d4")

# Event names understood by the web client
NEW_OFFER = "newOffer"
OFFER_UPDATED = "offerUpdated"
PAYMENT_UPDATED = "paymentUpdated"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


class NotificationRelay(ABC):
    """Fire-and-forget publisher of room events"""

    def emit(self, room_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        """Publish an event to a room. Never raises."""
        try:
            self._publish(room_id, event_name, payload)
        except Exception as e:
            logger.warning(
                f"Dropped {event_name} notification for {room_id}: {e}",
                extra={"room_id": room_id, "event_name": event_name},
            )

    @abstractmethod
    def _publish(self, room_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        pass


class InMemoryNotificationRelay(NotificationRelay):
    """Records emitted events; used in stub mode and tests"""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    def _publish(self, room_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append((room_id, event_name, payload))

    def events_for(self, room_id: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            return [(name, payload) for room, name, payload in self.events if room == room_id]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class RedisNotificationRelay(NotificationRelay):
    """Publishes JSON messages on `{prefix}:{room_id}` Redis channels"""

    def __init__(self, redis_client: redis.Redis, channel_prefix: str = "marketplace"):
        self.redis_client = redis_client
        self.channel_prefix = channel_prefix

    @classmethod
    def from_url(cls, url: str, channel_prefix: str = "marketplace") -> "RedisNotificationRelay":
        return cls(redis.Redis.from_url(url, decode_responses=True), channel_prefix)

    def _publish(self, room_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        channel = f"{self.channel_prefix}:{room_id}"
        message = {
            "event": event_name,
            "room": room_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        }
        receivers = self.redis_client.publish(channel, json.dumps(message, default=str))
        logger.debug(f"Published {event_name} to {channel}: {receivers} subscribers")


def build_relay(settings: Optional[Settings] = None) -> NotificationRelay:
    """Build the relay selected by settings.notification_backend"""
    settings = settings or get_settings()
    if settings.notification_backend == "redis":
        return RedisNotificationRelay.from_url(settings.redis_url, settings.notification_channel_prefix)
    return InMemoryNotificationRelay()
