"""
Redis connection pool used by the durable document store
"""

import asyncio
import redis.asyncio as redis
from typing import Optional
import structlog

logger = structlog.get_logger(__name__)

HEALTH_CHECK_INTERVAL = 30


class RedisPool:
    """Redis connection pool manager"""

    def __init__(self, max_connections: int = 20, max_retries: int = 3):
        self._pool: Optional[redis.ConnectionPool] = None
        self._client: Optional[redis.Redis] = None
        self.max_connections = max_connections
        self.max_retries = max_retries

    async def initialize(self, redis_url: str):
        """Initialize Redis connection pool"""
        try:
            self._pool = redis.ConnectionPool.from_url(
                redis_url,
                max_connections=self.max_connections,
                retry_on_timeout=True,
                health_check_interval=HEALTH_CHECK_INTERVAL,
                encoding="utf-8",
                decode_responses=True
            )
            self._client = redis.Redis(connection_pool=self._pool)

            await self._client.ping()

            logger.info("Redis connection pool initialized",
                        max_connections=self.max_connections,
                        health_check_interval=HEALTH_CHECK_INTERVAL)

        except Exception as e:
            logger.error("Failed to initialize Redis pool", error=str(e))
            raise

    async def get_client(self) -> redis.Redis:
        """Get Redis client from pool"""
        if not self._client:
            raise RuntimeError("Redis pool not initialized")
        return self._client

    async def execute(self, command: str, *args, **kwargs):
        """Execute a Redis command with retry and exponential backoff"""
        client = await self.get_client()

        for attempt in range(self.max_retries):
            try:
                method = getattr(client, command)
                return await method(*args, **kwargs)
            except (redis.ConnectionError, redis.TimeoutError) as e:
                if attempt == self.max_retries - 1:
                    logger.error("Redis command failed after retries",
                                 command=command,
                                 error=str(e))
                    raise

                logger.warning("Redis command retry",
                               command=command,
                               attempt=attempt + 1)
                await asyncio.sleep(0.1 * (2 ** attempt))

    async def close(self):
        """Close Redis connection pool"""
        if self._client:
            await self._client.aclose()
            self._client = None

        if self._pool:
            await self._pool.disconnect()
            self._pool = None

        logger.info("Redis connection pool closed")

    async def health_check(self) -> bool:
        """Check Redis connection health"""
        try:
            if self._client:
                await self._client.ping()
                return True
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
        return False
