"""
Shared Redis plumbing for the site and domain registries.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..errors import StorageUnavailable

logger = logging.getLogger("simplhost.registry")


class RedisStore:
    """
    Base class for record registries.

    Uses Redis for persistence and cross-instance coordination.
    Falls back to in-memory storage if Redis is unreachable when the
    first connection is made. Once connected, Redis errors surface as
    StorageUnavailable instead of silently switching stores.
    """

    name = "registry"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "simplhost:",
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None
        self._use_redis = True
        # Guards read-check-write sequences on the in-memory fallback
        self._lock = asyncio.Lock()

    async def _get_redis(self) -> Optional[redis.Redis]:
        """Get Redis connection."""
        if not self._use_redis:
            return None

        if self._redis is None:
            client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            try:
                await client.ping()
            except Exception as e:
                logger.warning(
                    f"Redis unavailable for {self.name}, using in-memory: {e}"
                )
                self._use_redis = False
                return None
            self._redis = client
            logger.info(f"{self.name} connected to Redis")

        return self._redis

    @contextmanager
    def _storage_errors(self, operation: str):
        """Translate Redis failures into StorageUnavailable."""
        try:
            yield
        except RedisError as e:
            logger.error(f"{self.name} {operation} failed: {e}")
            raise StorageUnavailable() from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info(f"{self.name} Redis connection closed")
