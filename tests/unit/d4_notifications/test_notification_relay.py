"""
Tests for the notification relays
"""
import json
from unittest.mock import MagicMock, patch

import redis

from core.config import Settings
from d4_notifications.relay import (
    OFFER_UPDATED,
    InMemoryNotificationRelay,
    RedisNotificationRelay,
    build_relay,
    conversation_room,
    user_room,
)


class TestRooms:
    def test_room_names(self):
        assert user_room("u-1") == "user:u-1"
        assert conversation_room("c-1") == "conversation:c-1"


class TestInMemoryRelay:
    def test_records_events(self):
        relay = InMemoryNotificationRelay()
        relay.emit("user:u-1", OFFER_UPDATED, {"id": "o-1"})
        relay.emit("user:u-2", OFFER_UPDATED, {"id": "o-2"})

        assert relay.events_for("user:u-1") == [(OFFER_UPDATED, {"id": "o-1"})]
        relay.clear()
        assert relay.events == []


class TestRedisRelay:
    def test_publishes_json_envelope(self):
        client = MagicMock()
        client.publish.return_value = 2
        relay = RedisNotificationRelay(client, channel_prefix="mk")

        relay.emit("user:u-1", OFFER_UPDATED, {"id": "o-1", "status": "accepted"})

        channel, message = client.publish.call_args.args
        assert channel == "mk:user:u-1"
        envelope = json.loads(message)
        assert envelope["event"] == OFFER_UPDATED
        assert envelope["room"] == "user:u-1"
        assert envelope["payload"] == {"id": "o-1", "status": "accepted"}
        assert envelope["timestamp"]

    def test_publish_failure_is_swallowed(self):
        client = MagicMock()
        client.publish.side_effect = redis.ConnectionError("connection refused")
        relay = RedisNotificationRelay(client)

        relay.emit("user:u-1", OFFER_UPDATED, {"id": "o-1"})

        client.publish.assert_called_once()

    def test_from_url(self):
        with patch("d4_notifications.relay.redis.Redis.from_url") as from_url:
            relay = RedisNotificationRelay.from_url("redis://cache:6379/2", channel_prefix="mk")

        from_url.assert_called_once_with("redis://cache:6379/2", decode_responses=True)
        assert relay.redis_client is from_url.return_value


class TestBuildRelay:
    def test_memory_backend(self):
        relay = build_relay(Settings(notification_backend="memory", _env_file=None))
        assert isinstance(relay, InMemoryNotificationRelay)

    def test_redis_backend(self):
        settings = Settings(notification_backend="redis", redis_url="redis://cache:6379/0", _env_file=None)
        with patch("d4_notifications.relay.redis.Redis.from_url"):
            relay = build_relay(settings)
        assert isinstance(relay, RedisNotificationRelay)
        assert relay.channel_prefix == "marketplace"


class TestStateChangesSurviveRelayFailure:
    def test_offer_created_when_relay_is_down(self, session_factory, gateway, test_settings, seller, offer_terms):
        from d2_offers.lifecycle import OfferLifecycleController

        client = MagicMock()
        client.publish.side_effect = redis.ConnectionError("connection refused")
        controller = OfferLifecycleController(
            session_factory, gateway, RedisNotificationRelay(client), settings=test_settings
        )

        offer = controller.create_offer(seller.user_id, offer_terms)

        assert offer.status.value == "sent"
        assert client.publish.call_count >= 1
