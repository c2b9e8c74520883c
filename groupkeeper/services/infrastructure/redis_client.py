# groupkeeper/services/infrastructure/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from groupkeeper.config import settings
from groupkeeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RedisQueueClient:
    """Pooled Redis client for the add/remove work queues."""

    def __init__(self):
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            redis_url = settings.redis_url()
            logger.info("Attempting Redis connection", host=settings.REDIS_HOST)

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=5,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis queue client initialized successfully")

        except Exception as e:
            logger.error("Failed to initialize Redis queue client", error=str(e))
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
            logger.info("Redis queue client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        """Ensure Redis is initialized, fallback if not"""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def pop_left(self, key: str) -> str | None:
        """
        Destructively pop the oldest item of a queue list.

        Errors propagate: a failed pop must not look like an empty queue.
        """
        await self._ensure_initialized()
        return await self.client.lpop(key)

    async def length(self, key: str) -> int:
        await self._ensure_initialized()
        return int(await self.client.llen(key))

    async def peek(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        """Read queue items without consuming them."""
        await self._ensure_initialized()
        return await self.client.lrange(key, start, end)


redis_client = RedisQueueClient()
