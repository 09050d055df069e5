"""
Redis event publisher for NovelForge.
Mirrors workflow lifecycle and stream terminal events to a per-request
pub/sub channel that the external transport layer subscribes to.
"""

import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

from ..models import utc_now

logger = logging.getLogger("novelforge.redis")


class RedisEventPublisher:
    """Best-effort pub/sub publisher; failures are logged and swallowed."""

    CHANNEL_PREFIX = "novelforge:events"

    def __init__(self, redis_url: str = "redis://localhost:6379"):
        self.redis_url = redis_url
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> bool:
        """Establish connection to Redis. Returns False when unreachable."""
        try:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
            await self._client.ping()
            return True
        except Exception as e:
            logger.warning(f"[connect] Redis unavailable at {self.redis_url}: {e}")
            self._client = None
            return False

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def channel_for(self, request_id: str) -> str:
        return f"{self.CHANNEL_PREFIX}:{request_id}"

    async def publish(self, request_id: str, event_type: str, data: Optional[Dict[str, Any]] = None) -> bool:
        if self._client is None:
            return False
        payload = {
            "type": event_type,
            "request_id": request_id,
            "timestamp": utc_now().isoformat(),
            **(data or {}),
        }
        try:
            await self._client.publish(self.channel_for(request_id), json.dumps(payload, default=str))
            return True
        except Exception as e:
            logger.warning(f"[publish] Failed to publish {event_type} for {request_id}: {e}")
            return False
