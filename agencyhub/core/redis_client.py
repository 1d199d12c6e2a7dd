"""
Redis connection lifecycle.

Only needed when counters are shared between processes
(``RATE_LIMIT_BACKEND=redis``).
"""

import logging

import redis.asyncio as aioredis

from agencyhub.config import settings

logger = logging.getLogger(__name__)


class RedisManager:
    """
    Redis connection manager.

    Handles:
    - Connection pool lifecycle
    - Key namespacing
    """

    def __init__(self) -> None:
        self._client: aioredis.Redis | None = None

    async def init(self, url: str | None = None) -> None:
        """Initialize Redis connection pool."""
        logger.info("Initializing Redis connection...")

        self._client = aioredis.from_url(
            url or str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
            max_connections=20,
        )

        # Test connection
        await self._client.ping()
        logger.info("Redis connection initialized")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> aioredis.Redis:
        """Get Redis client."""
        if not self._client:
            raise RuntimeError("Redis not initialized. Call init() first.")
        return self._client


def build_key(namespace: str, key: str) -> str:
    """
    Build a namespaced Redis key.

    Format: agencyhub:{namespace}:{key}
    Example: agencyhub:rl:key-creation:3f2a...
    """
    return f"agencyhub:{namespace}:{key}"


# Global instance
redis_manager = RedisManager()
