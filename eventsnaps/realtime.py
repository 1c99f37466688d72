"""
Redis pub/sub fan-out of per-event changes
"""

import json
import logging
from typing import Any, Dict, Optional
import redis.asyncio as redis

logger = logging.getLogger(__name__)

# Event names carried in published messages
PHOTO_INSERTED = "INSERT_photo"
PHOTO_UPDATED = "UPDATE_photo"
JUKEBOX_INSERTED = "INSERT_jukebox"
JUKEBOX_UPDATED = "UPDATE_jukebox"
NOW_PLAYING = "nowPlaying:set"


def photos_channel(event_id) -> str:
    return f"photos:{event_id}"


def jukebox_channel(event_id) -> str:
    return f"jukebox:{event_id}"


def event_channel(event_id) -> str:
    return f"event:{event_id}"


class EventBroadcaster:
    """Publishes photo and jukebox changes to per-event Redis channels.

    Publishing is best effort: a missing or failing Redis connection is
    logged and otherwise ignored so writes never fail because of fan-out.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.redis_client: Optional[redis.Redis] = client

    async def initialize(self):
        """Initialize Redis connection"""
        if self.redis_client is None and self.redis_url:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=True)

    async def close(self):
        """Close Redis connection"""
        if self.redis_client:
            await self.redis_client.close()

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> bool:
        if not self.redis_client:
            logger.debug("Realtime disabled, dropping message", extra={"channel": channel, "event": event})
            return False
        message = json.dumps({"event": event, "payload": payload}, default=str)
        try:
            await self.redis_client.publish(channel, message)
            return True
        except Exception as e:
            logger.warning(f"Realtime publish failed on {channel}: {e}")
            return False

    async def photo_inserted(self, photo: Dict[str, Any]) -> bool:
        return await self.publish(photos_channel(photo["event_id"]), PHOTO_INSERTED, photo)

    async def photo_updated(self, photo: Dict[str, Any]) -> bool:
        return await self.publish(photos_channel(photo["event_id"]), PHOTO_UPDATED, photo)

    async def jukebox_inserted(self, item: Dict[str, Any]) -> bool:
        return await self.publish(jukebox_channel(item["event_id"]), JUKEBOX_INSERTED, item)

    async def jukebox_updated(self, item: Dict[str, Any]) -> bool:
        return await self.publish(jukebox_channel(item["event_id"]), JUKEBOX_UPDATED, item)

    async def now_playing(self, event_id, track: Dict[str, Any]) -> bool:
        return await self.publish(event_channel(event_id), NOW_PLAYING, {"eventId": str(event_id), "track": track})


async def check_redis_health(broadcaster: EventBroadcaster) -> str:
    if not broadcaster.redis_client:
        return "disabled"
    try:
        await broadcaster.redis_client.ping()
        return "connected"
    except Exception as e:
        return f"error: {str(e)}"
