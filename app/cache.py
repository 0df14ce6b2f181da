"""
Processed-event markers in Redis.

The payment provider redelivers webhooks until it sees a 2xx, so each
webhook-id is remembered for a day after it has been applied.
"""
import logging
from typing import Optional

import redis

from .rate_limiter import get_redis_client

logger = logging.getLogger(__name__)

PROCESSED_MARKER_TTL_SECONDS = 86400


class ProcessedEvents:
    """Redis-backed set of handled event ids with expiry"""

    def __init__(self, prefix: str = "webhook_processed"):
        self.prefix = prefix
        self._client: Optional[redis.Redis] = None

    def _key(self, event_id: str) -> str:
        return f"{self.prefix}:{event_id}"

    def _get_client(self) -> Optional[redis.Redis]:
        """Lazy load Redis client"""
        if self._client is None:
            try:
                self._client = get_redis_client()
            except Exception as e:
                logger.warning(f"Redis unavailable, duplicate webhooks rely on idempotent updates: {e}")
                return None
        return self._client

    def seen(self, event_id: str) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            return bool(client.exists(self._key(event_id)))
        except redis.RedisError as e:
            logger.error(f"Could not read processed marker for {event_id}: {e}")
            return False

    def remember(self, event_id: str, ttl: int = PROCESSED_MARKER_TTL_SECONDS) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            client.setex(self._key(event_id), ttl, "1")
            return True
        except redis.RedisError as e:
            logger.error(f"Could not store processed marker for {event_id}: {e}")
            return False


processed_webhooks = ProcessedEvents()


def get_processed_webhooks() -> ProcessedEvents:
    """FastAPI dependency returning the shared webhook marker store"""
    return processed_webhooks
