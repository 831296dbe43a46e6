"""
Redis Caching Layer

Provides caching decorators and utilities for API endpoints.
Redis is optional: when it is not configured or unreachable every helper
degrades to a no-op and the wrapped endpoint runs uncached.
"""
import asyncio
import json
import hashlib
from typing import Optional, Callable, Any
from functools import wraps
import redis
from redis.exceptions import RedisError

from config.settings import settings
from src.offerlookup.utils.logger import get_logger

logger = get_logger(__name__)

PROPERTY_LIST_PREFIX = "properties:list"
PROPERTY_DETAIL_PREFIX = "properties:detail"
STATS_PREFIX = "stats"

_KEY_TYPES = (str, int, float, bool, type(None))

# Redis client configuration
redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client instance.

    Returns:
        Redis client if available, None if not configured or connection fails
    """
    global redis_client

    if redis_client is None:
        redis_url = settings.redis_url

        if not redis_url:
            logger.debug("redis_connection_skipped", reason="redis_url not configured")
            return None

        try:
            client = redis.Redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            # Test connection
            client.ping()
            redis_client = client
        except RedisError as e:
            logger.warning("redis_connection_failed", error=str(e))
            redis_client = None

    return redis_client


def make_cache_key(prefix: str, *args, **kwargs) -> str:
    """
    Generate cache key from function arguments.

    Only plain values (str, int, float, bool, None) take part in the key,
    so injected dependencies such as sessions or users are ignored.

    Args:
        prefix: Cache key prefix
        *args: Positional arguments
        **kwargs: Keyword arguments

    Returns:
        Cache key string
    """
    key_data = {
        "args": [str(arg) for arg in args if isinstance(arg, _KEY_TYPES)],
        "kwargs": {k: str(v) for k, v in sorted(kwargs.items()) if isinstance(v, _KEY_TYPES)}
    }
    key_string = json.dumps(key_data, sort_keys=True)
    key_hash = hashlib.md5(key_string.encode()).hexdigest()
    return f"{prefix}:{key_hash}"


def cache_result(prefix: str, ttl: int = 300):
    """
    Decorator to cache async endpoint results in Redis.

    The wrapped function must return something JSON-serializable.

    Args:
        prefix: Cache key prefix
        ttl: Time to live in seconds (default 5 minutes)

    Returns:
        Decorated function with caching
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            client = get_redis_client()

            # If Redis is unavailable, call function directly
            if client is None:
                return await func(*args, **kwargs)

            cache_key = make_cache_key(prefix, *args, **kwargs)

            try:
                cached = await asyncio.to_thread(client.get, cache_key)
                if cached is not None:
                    logger.debug("cache_hit", key=cache_key)
                    return json.loads(cached)
            except RedisError as e:
                logger.warning("cache_read_error", key=cache_key, error=str(e))

            result = await func(*args, **kwargs)

            try:
                payload = json.dumps(result, default=str)
                await asyncio.to_thread(client.setex, cache_key, ttl, payload)
            except RedisError as e:
                logger.warning("cache_write_error", key=cache_key, error=str(e))

            return result

        return wrapper
    return decorator


def invalidate_cache(prefix: str) -> int:
    """
    Invalidate all cache keys with given prefix.

    Args:
        prefix: Cache key prefix to invalidate

    Returns:
        Number of keys deleted
    """
    client = get_redis_client()

    if client is None:
        return 0

    try:
        keys = list(client.scan_iter(match=f"{prefix}:*"))
        deleted = client.delete(*keys) if keys else 0
        logger.info("cache_invalidated", prefix=prefix, deleted=deleted)
        return deleted
    except RedisError as e:
        logger.warning("cache_invalidation_error", prefix=prefix, error=str(e))
        return 0


def invalidate_property_cache() -> int:
    """
    Drop cached property listings, details and statistics.

    Blocking; async callers run it through asyncio.to_thread.
    """
    return sum(
        invalidate_cache(prefix)
        for prefix in (PROPERTY_LIST_PREFIX, PROPERTY_DETAIL_PREFIX, STATS_PREFIX)
    )


def get_cache_stats() -> dict:
    """
    Get Redis cache statistics.

    Returns:
        Dictionary with cache stats
    """
    client = get_redis_client()

    if client is None:
        return {
            "available": False,
            "error": "Redis connection unavailable"
        }

    try:
        info = client.info("stats")
        return {
            "available": True,
            "total_keys": client.dbsize(),
            "hits": info.get("keyspace_hits", 0),
            "misses": info.get("keyspace_misses", 0),
            "hit_rate": info.get("keyspace_hits", 0) / max(
                info.get("keyspace_hits", 0) + info.get("keyspace_misses", 0), 1
            ) * 100,
        }
    except RedisError as e:
        return {
            "available": False,
            "error": str(e)
        }
