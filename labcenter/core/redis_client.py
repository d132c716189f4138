"""Redis client configuration and cache helpers."""

import json
from typing import Any, cast

import redis
import structlog

from labcenter.config import settings

logger = structlog.get_logger(__name__)

# Global Redis client instance
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """Check if Redis connection is healthy."""
    try:
        client = get_redis_client()
        client.ping()
        return True
    except Exception:
        return False


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None


class CacheManager:
    """
    Redis-backed cache for reference data and user profiles.

    Every operation degrades to a cache miss when Redis is unavailable, so
    callers always fall back to the database.
    """

    def __init__(self, redis_client: redis.Redis, namespace: str = "labcenter"):
        """Initialize cache manager with Redis client and key namespace."""
        self.redis = redis_client
        self.namespace = namespace

    def key(self, *parts: Any) -> str:
        """Build a namespaced key, e.g. ``labcenter:catalog:tests``."""
        return ":".join([self.namespace, *(str(p) for p in parts)])

    def get(self, key: str) -> str | None:
        """Get raw value from cache."""
        try:
            return cast(str | None, self.redis.get(key))
        except Exception as e:
            logger.debug("cache_get_failed", key=key, error=str(e))
            return None

    def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """
        Set raw value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        try:
            if ttl:
                self.redis.setex(key, ttl, value)
            else:
                self.redis.set(key, value)
            return True
        except Exception as e:
            logger.debug("cache_set_failed", key=key, error=str(e))
            return False

    def delete(self, *keys: str) -> bool:
        """Delete one or more keys."""
        if not keys:
            return True
        try:
            self.redis.delete(*keys)
            return True
        except Exception as e:
            logger.debug("cache_delete_failed", keys=list(keys), error=str(e))
            return False

    def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        try:
            return bool(self.redis.exists(key))
        except Exception:
            return False

    def get_json(self, key: str) -> Any | None:
        """Get a JSON value from cache and deserialize it."""
        value = self.get(key)
        if not value:
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return None

    def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Serialize a value to JSON and cache it."""
        try:
            json_value = json.dumps(value, default=str)
        except (TypeError, ValueError):
            return False
        return self.set(key, json_value, ttl=ttl)

