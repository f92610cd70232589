"""
Redis pub/sub fan-out for GPS events

Publishes each event as JSON on '<prefix>:<channel>' so services outside this
process (notifications, dashboards) can subscribe. Pub/sub keeps the same
at-most-once contract as the WebSocket fan-out.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

import redis.asyncio as redis

from services.fanout import FanoutSink

logger = logging.getLogger(__name__)


class RedisFanout(FanoutSink):
    def __init__(self, redis_url: str, channel_prefix: str = "gps", redis_client=None):
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self.redis_client = redis_client
        self._pending: Set[asyncio.Task] = set()

    async def connect(self) -> bool:
        """Initialize Redis connection; False leaves the sink disabled"""
        try:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=True)
            await self.redis_client.ping()
            logger.info(f"Redis fan-out connected: {self.redis_url}")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Redis, fan-out disabled: {e}")
            self.redis_client = None
            return False

    async def disconnect(self):
        """Close Redis connection"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    def channel_name(self, channel: str) -> str:
        return f"{self.channel_prefix}:{channel}"

    def deliver(self, channel: str, message: Dict[str, Any], vehicle_id: Optional[str]) -> None:
        if self.redis_client is None:
            return
        payload = json.dumps(message)
        task = asyncio.get_running_loop().create_task(
            self._publish_message(self.channel_name(channel), payload)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish_message(self, channel: str, payload: str):
        try:
            receivers = await self.redis_client.publish(channel, payload)
            logger.debug(f"Published to {channel} ({receivers} subscribers)")
        except Exception as e:
            logger.error(f"Failed to publish to {channel}: {e}")
