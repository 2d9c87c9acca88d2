import redis.asyncio as aioredis
from redis.asyncio import Redis

from contrib_leaderboard.core.config import settings

_redis: Redis | None = None


def create_redis(url: str | None = None) -> Redis:
    """Create a new Redis client. Responses are decoded to ``str``."""
    return aioredis.from_url(url or str(settings.redis_url), decode_responses=True)


def get_redis() -> Redis:
    """Get or create the shared Redis client (lazy initialization)."""
    global _redis
    if _redis is None:
        _redis = create_redis()
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
