import secrets

from fastapi import Depends, Header, HTTPException, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contrib_leaderboard.core.config import settings
from contrib_leaderboard.core.redis import get_redis
from contrib_leaderboard.db import get_session_factory
from contrib_leaderboard.services.aggregator import AggregatorDeps, ContributionAggregator


def get_redis_client() -> Redis:
    return get_redis()


def get_aggregator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    redis: Redis = Depends(get_redis_client),
) -> ContributionAggregator:
    return ContributionAggregator(AggregatorDeps(session_factory=session_factory, redis=redis))


async def verify_cron_secret(authorization: str | None = Header(None)) -> None:
    """Internal endpoints require ``Authorization: Bearer <CRON_SECRET>``."""
    expected = settings.cron_secret
    if not expected or not secrets.compare_digest(authorization or "", f"Bearer {expected}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
