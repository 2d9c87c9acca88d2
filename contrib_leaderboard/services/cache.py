import json
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = structlog.get_logger()

DEFAULT_TTL = 60 * 60
CACHE_PREFIX = "api:cache:"


async def get_cached(
    redis: Redis,
    key: str,
    fetcher: Callable[[], Awaitable[Any]],
    ttl: int = DEFAULT_TTL,
    prefix: str = CACHE_PREFIX,
) -> Any:
    """Read-through cache for JSON-serialisable values.

    Cache failures are logged and ignored; the fetcher always gets a chance
    to answer.
    """
    cache_key = f"{prefix}{key}"

    try:
        cached = await redis.get(cache_key)
        if cached is not None:
            return json.loads(cached)
    except (RedisError, ValueError) as e:
        logger.warning("Cache read error", key=cache_key, error=str(e))

    data = await fetcher()

    try:
        await redis.set(cache_key, json.dumps(data), ex=ttl)
    except (RedisError, TypeError) as e:
        logger.warning("Cache write error", key=cache_key, error=str(e))

    return data


async def invalidate_cache(redis: Redis, pattern: str, prefix: str = CACHE_PREFIX) -> int:
    """Delete every cached key under ``prefix + pattern``. Returns keys removed."""
    if not pattern or not isinstance(pattern, str):
        raise ValueError("Pattern must be a non-empty string")

    removed = 0
    try:
        async for key in redis.scan_iter(match=f"{prefix}{pattern}*", count=100):
            removed += await redis.delete(key)
    except RedisError as e:
        logger.warning("Cache invalidation error", pattern=pattern, error=str(e))
    return removed


def create_cache_key(*parts: str) -> str:
    return ":".join(p for p in parts if p)
