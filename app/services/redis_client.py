# app/services/redis_client.py
import time

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FastRedisClient:
    """Pooled async Redis client backing the durable job queues."""

    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        redis_url = self.redis_url or settings.REDIS_URL
        if not redis_url:
            raise RuntimeError("REDIS_URL is not configured")

        try:
            logger.info("Attempting Redis connection", url_preview=_redact(redis_url))

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=20,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                # must outlive the blocking pop timeout used by queue consumers
                socket_timeout=15,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Fast Redis client initialized successfully", max_connections=20)

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        """Ensure Redis is initialized, fallback if not"""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def get(self, key: str) -> str | None:
        """Get value - with fallback handling"""
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
            return result if result else None
        except Exception as e:
            logger.error("Redis GET failed", key=key[:60], error=str(e))
            return None

    async def get_or_raise(self, key: str) -> str | None:
        """Get value, letting Redis errors propagate so callers can tell them from a miss."""
        await self._ensure_initialized()
        try:
            return await self.client.get(key)
        except Exception as e:
            logger.error("Redis GET failed", key=key[:60], error=str(e))
            raise

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """Set value with TTL - with fallback handling"""
        try:
            await self._ensure_initialized()

            if ttl_s:
                result = await self.client.setex(key, ttl_s, value)
            else:
                result = await self.client.set(key, value)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET failed", key=key[:60], error=str(e))
            return False

    async def incr(self, key: str) -> int | None:
        """Increment a counter and return the new value."""
        try:
            await self._ensure_initialized()
            return int(await self.client.incr(key))
        except Exception as e:
            logger.error("Redis INCR failed", key=key[:60], error=str(e))
            return None

    async def push_to_list(self, key: str, value: str, left: bool = True) -> bool:
        """
        Push a value onto a Redis list (used as the queue's wait list).

        Consumers pop from the right, so left pushes give FIFO order.
        """
        try:
            await self._ensure_initialized()
            if left:
                result = await self.client.lpush(key, value)
            else:
                result = await self.client.rpush(key, value)
            return result > 0
        except Exception as e:
            logger.error(
                "Redis LIST push failed", key=key[:60], value_preview=value[:30], error=str(e)
            )
            return False

    async def pop_to_inflight(
        self, source_key: str, inflight_key: str, timeout: int = 0
    ) -> str | None:
        """
        Pop a value from a list and push to an in-flight list (acked queue).

        Uses BRPOPLPUSH for blocking behavior to avoid losing jobs on worker crash.
        """
        try:
            await self._ensure_initialized()
            if timeout > 0:
                payload = await self.client.brpoplpush(source_key, inflight_key, timeout=timeout)
            else:
                payload = await self.client.rpoplpush(source_key, inflight_key)
            return payload
        except Exception as e:
            logger.error(
                "Redis LIST inflight pop failed",
                source_key=source_key[:60],
                inflight_key=inflight_key[:60],
                error=str(e),
            )
            return None

    async def ack_from_inflight(self, inflight_key: str, value: str) -> bool:
        """Remove a processed item from the in-flight list."""
        try:
            await self._ensure_initialized()
            removed = await self.client.lrem(inflight_key, 0, value)
            return removed > 0
        except Exception as e:
            logger.error(
                "Redis inflight ack failed",
                inflight_key=inflight_key[:60],
                value_preview=value[:30],
                error=str(e),
            )
            return False

    async def list_length(self, key: str) -> int:
        """LLEN, zero on failure."""
        try:
            await self._ensure_initialized()
            return int(await self.client.llen(key))
        except Exception as e:
            logger.error("Redis LLEN failed", key=key[:60], error=str(e))
            return 0

    async def schedule(self, key: str, value: str, ready_at: float) -> bool:
        """Add a value to a sorted set scored by the unix time it becomes due."""
        try:
            await self._ensure_initialized()
            await self.client.zadd(key, {value: ready_at})
            return True
        except Exception as e:
            logger.error("Redis ZADD failed", key=key[:60], error=str(e))
            return False

    async def promote_due(
        self, schedule_key: str, destination_key: str, now: float | None = None
    ) -> int:
        """Move every scheduled value whose time has come onto a list."""
        now = time.time() if now is None else now
        try:
            await self._ensure_initialized()
            due = await self.client.zrangebyscore(schedule_key, 0, now)
            moved = 0
            for value in due:
                # only the consumer that wins the ZREM pushes the value
                if await self.client.zrem(schedule_key, value):
                    await self.client.lpush(destination_key, value)
                    moved += 1
            return moved
        except Exception as e:
            logger.error("Redis delayed promotion failed", key=schedule_key[:60], error=str(e))
            return 0

    async def sorted_set_size(self, key: str) -> int:
        """ZCARD, zero on failure."""
        try:
            await self._ensure_initialized()
            return int(await self.client.zcard(key))
        except Exception as e:
            logger.error("Redis ZCARD failed", key=key[:60], error=str(e))
            return 0


def _redact(url: str) -> str:
    """Hide credentials in a redis:// URL before logging it."""
    if "@" not in url:
        return url[:40]
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"[:60]


# Global instance
fast_redis = FastRedisClient()
