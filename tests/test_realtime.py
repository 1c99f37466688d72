"""Tests for realtime fan-out"""
import json
import uuid
from unittest.mock import AsyncMock

from eventsnaps.realtime import (
    EventBroadcaster, PHOTO_INSERTED, NOW_PLAYING, check_redis_health
)


class TestEventBroadcaster:
    """Tests for Redis publishing"""

    async def test_publish_photo(self):
        client = AsyncMock()
        broadcaster = EventBroadcaster(client=client)
        event_id = str(uuid.uuid4())

        assert await broadcaster.photo_inserted({"event_id": event_id, "status": "pending"}) is True

        channel, message = client.publish.await_args.args
        assert channel == f"photos:{event_id}"
        assert json.loads(message) == {"event": PHOTO_INSERTED, "payload": {"event_id": event_id, "status": "pending"}}

    async def test_now_playing_channel(self):
        client = AsyncMock()
        event_id = uuid.uuid4()
        await EventBroadcaster(client=client).now_playing(event_id, {"title": "Song"})

        channel, message = client.publish.await_args.args
        assert channel == f"event:{event_id}"
        body = json.loads(message)
        assert body["event"] == NOW_PLAYING
        assert body["payload"] == {"eventId": str(event_id), "track": {"title": "Song"}}

    async def test_disabled_drops_messages(self):
        assert await EventBroadcaster().jukebox_updated({"event_id": "e"}) is False

    async def test_publish_failure_is_swallowed(self):
        client = AsyncMock()
        client.publish.side_effect = ConnectionError("redis down")
        assert await EventBroadcaster(client=client).jukebox_inserted({"event_id": "e"}) is False

    async def test_health(self):
        assert await check_redis_health(EventBroadcaster()) == "disabled"

        client = AsyncMock()
        assert await check_redis_health(EventBroadcaster(client=client)) == "connected"

        client.ping.side_effect = ConnectionError("refused")
        assert (await check_redis_health(EventBroadcaster(client=client))).startswith("error")
