"""
Redis Connection Management

Redis connection with retries, the availability expansion cache, and
graceful degradation. Every cache operation fails open: a Redis outage
costs a recomputation, never a failed request.
"""

import json
import logging
from datetime import date, timedelta
from typing import Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, TimeoutError, RedisError

from app.config import settings
from app.core.calendar.types import Expansion

# Logger
logger = logging.getLogger(__name__)

# App prefix for keys that are not part of the availability cache
APP_PREFIX = "calendar:v1:"


class RedisClient:
    """
    Manages Redis connection as a singleton.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """
        Get or create Redis client.

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        try:
            # Retry configuration: 3 retries with exponential backoff
            retry = Retry(ExponentialBackoff(), retries=3)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            # Test connection
            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established successfully")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        """Check if Redis is connected."""
        return cls._connected


async def get_redis() -> Optional[Redis]:
    """
    FastAPI dependency that provides Redis client.

    Returns None if Redis is unavailable.
    """
    return await RedisClient.get_client()


class AvailabilityCache:
    """
    Cache of expanded (pre-subtraction) availability slots.

    Keys:
    - availability:{therapist_id}:{start_date}:{end_date} -> expansion (JSON)

    Writes to a therapist's schedule drop every key under
    availability:{therapist_id}:. Gracefully handles Redis unavailability.
    """

    KEY_PREFIX = "availability:"

    def __init__(self, redis_client: Optional[Redis], ttl: Optional[int] = None):
        self.redis = redis_client
        self.ttl = ttl or settings.availability_cache_ttl

    def _key(self, therapist_id: str, start: date, end: date) -> str:
        return f"{self.KEY_PREFIX}{therapist_id}:{start.isoformat()}:{end.isoformat()}"

    def _therapist_pattern(self, therapist_id: str) -> str:
        return f"{self.KEY_PREFIX}{therapist_id}:*"

    async def get(
        self,
        therapist_id: str,
        start: date,
        end: date,
    ) -> Optional[Expansion]:
        """
        Get a cached expansion for a range.

        Returns:
            Expansion, or None on a miss or when Redis is unavailable
        """
        if self.redis is None:
            return None

        key = self._key(therapist_id, start, end)
        try:
            data = await self.redis.get(key)
        except RedisError as e:
            logger.error(f"Availability cache read failed for {key}: {e}")
            return None

        if data is None:
            return None

        try:
            return Expansion.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding malformed cache entry {key}: {e}")
            return None

    async def set(
        self,
        therapist_id: str,
        start: date,
        end: date,
        expansion: Expansion,
    ) -> bool:
        """
        Cache an expansion for a range.

        Returns:
            True if stored, False if Redis unavailable
        """
        if self.redis is None:
            return False

        key = self._key(therapist_id, start, end)
        try:
            await self.redis.setex(
                key,
                timedelta(seconds=self.ttl),
                json.dumps(expansion.to_dict()),
            )
            return True
        except RedisError as e:
            logger.error(f"Availability cache write failed for {key}: {e}")
            return False

    async def invalidate(self, therapist_id: str) -> int:
        """
        Drop every cached range of a therapist.

        Returns:
            Number of keys deleted (0 if Redis unavailable)
        """
        if self.redis is None:
            logger.warning(
                f"Redis unavailable - cannot invalidate availability cache for {therapist_id}"
            )
            return 0

        try:
            keys = [
                key async for key in self.redis.scan_iter(
                    match=self._therapist_pattern(therapist_id)
                )
            ]
            if not keys:
                return 0
            deleted = await self.redis.delete(*keys)
            logger.debug(f"Invalidated {deleted} availability cache keys for {therapist_id}")
            return deleted
        except RedisError as e:
            logger.error(f"Availability cache invalidation failed for {therapist_id}: {e}")
            return 0


async def get_availability_cache() -> AvailabilityCache:
    """
    Get AvailabilityCache instance.

    Returns AvailabilityCache even if Redis unavailable (fails open).
    """
    client = await get_redis()
    return AvailabilityCache(client)


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    try:
        client = await get_redis()
        if client is None:
            return False

        await client.ping()
        return True

    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
