from collections.abc import Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from redis.asyncio import Redis

from contrib_leaderboard.api.dependencies import (
    get_aggregator,
    get_redis_client,
    verify_cron_secret,
)
from contrib_leaderboard.api.schemas.leaderboard import (
    BackfillRequest,
    DayWindow,
    RefreshDayRequest,
    RefreshResponse,
)
from contrib_leaderboard.core.config import settings
from contrib_leaderboard.core.dates import add_days, parse_day, utc_today, ymd
from contrib_leaderboard.services.aggregator import (
    ContributionAggregator,
    RangeResult,
    RefreshUserDayRangeArgs,
    active_providers,
)
from contrib_leaderboard.services.cache import invalidate_cache
from contrib_leaderboard.services.lock import (
    DistributedLock,
    LockInUseError,
    backfill_lock_key,
    refresh_lock_key,
)
from contrib_leaderboard.services.providers import ProviderError
from contrib_leaderboard.services.user_meta import UserMetaStore

logger = structlog.get_logger()

router = APIRouter(dependencies=[Depends(verify_cron_secret)])

REFRESH_LOCK_TTL = settings.leaderboard_lock_ttl_seconds
REFRESH_DEFAULT_CONCURRENCY = 6
BACKFILL_DEFAULT_DAYS = 30


def backfill_lock_ttl(days: int) -> int:
    return min(15 * 60, max(2 * 60, days * 2))


def backfill_auto_concurrency(days: int) -> int:
    if days > 180:
        return 3
    if days > 60:
        return 4
    return 6


def _active_providers(body: RefreshDayRequest | BackfillRequest) -> list[str]:
    """Providers the refresh will actually touch; GitHub is skipped without a token."""
    return [
        p.value
        for p in active_providers(body.github_login, body.gitlab_username, settings.github_token)
    ]


async def _run_locked(
    redis: Redis,
    keys: list[str],
    ttl: int,
    fn: Callable[[], Awaitable[RangeResult]],
    action: str,
) -> RangeResult:
    try:
        return await DistributedLock(redis).with_locks(keys, ttl, fn)
    except LockInUseError as e:
        provider = e.key.split(":")[2] if e.key.count(":") >= 2 else "unknown"
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Conflict: {action} already running for {provider}",
        ) from e
    except ProviderError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e


@router.post(
    "/refresh-day",
    response_model=RefreshResponse,
    summary="Refresh a user's contributions for a day range",
)
async def refresh_day(
    body: RefreshDayRequest,
    aggregator: ContributionAggregator = Depends(get_aggregator),
    redis: Redis = Depends(get_redis_client),
) -> RefreshResponse:
    """Refresh ``fromDayUtc..toDayUtc`` (default yesterday..today) and sync Redis."""
    today = utc_today()
    from_day = parse_day(body.from_day_utc) if body.from_day_utc else add_days(today, -1)
    to_day = parse_day(body.to_day_utc) if body.to_day_utc else today
    if from_day > to_day:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="fromDayUtc must be <= toDayUtc",
        )

    concurrency = min(max(body.concurrency or REFRESH_DEFAULT_CONCURRENCY, 1), 8)
    providers = _active_providers(body)
    keys = [refresh_lock_key(p, body.user_id, ymd(from_day), ymd(to_day)) for p in providers]

    async def run() -> RangeResult:
        result = await aggregator.refresh_user_day_range(
            RefreshUserDayRangeArgs(
                user_id=body.user_id,
                from_day_utc=from_day,
                to_day_utc=to_day,
                github_login=body.github_login,
                gitlab_username=body.gitlab_username,
                github_token=settings.github_token,
                gitlab_token=settings.gitlab_token,
                gitlab_base_url=settings.gitlab_base_url,
                concurrency=concurrency,
                sync_leaderboards=True,
            )
        )
        await invalidate_cache(redis, "leaderboard:details")
        return result

    result = await _run_locked(redis, keys, REFRESH_LOCK_TTL, run, "refresh")
    return RefreshResponse(
        user_id=body.user_id,
        providers=providers,
        range=DayWindow(from_=ymd(from_day), to=ymd(to_day)),
        days_refreshed=result.days_refreshed,
        concurrency=concurrency,
    )


@router.post(
    "/backfill",
    response_model=RefreshResponse,
    summary="Backfill the last N days for a user",
)
async def backfill(
    body: BackfillRequest,
    aggregator: ContributionAggregator = Depends(get_aggregator),
    redis: Redis = Depends(get_redis_client),
) -> RefreshResponse:
    """Backfill ``days`` days ending today, then sync Redis and profile meta."""
    today = utc_today()
    days = min(max(body.days or BACKFILL_DEFAULT_DAYS, 1), 365)
    from_day = add_days(today, -(days - 1))

    concurrency = min(max(body.concurrency or backfill_auto_concurrency(days), 1), 8)
    providers = _active_providers(body)
    keys = [backfill_lock_key(p, body.user_id) for p in providers]

    async def run() -> RangeResult:
        result = await aggregator.refresh_user_day_range(
            RefreshUserDayRangeArgs(
                user_id=body.user_id,
                from_day_utc=from_day,
                to_day_utc=today,
                github_login=body.github_login,
                gitlab_username=body.gitlab_username,
                github_token=settings.github_token,
                gitlab_token=settings.gitlab_token,
                gitlab_base_url=settings.gitlab_base_url,
                concurrency=concurrency,
                sync_leaderboards=True,
            )
        )
        meta_store = UserMetaStore(redis, session_factory=aggregator.deps.session_factory)
        await meta_store.set_user_meta_from_providers(
            body.user_id, body.github_login, body.gitlab_username
        )
        await invalidate_cache(redis, "leaderboard:details")
        return result

    result = await _run_locked(redis, keys, backfill_lock_ttl(days), run, "backfill")
    logger.info("Backfill completed", user_id=body.user_id, days=days, providers=providers)
    return RefreshResponse(
        user_id=body.user_id,
        providers=providers,
        range=DayWindow(from_=ymd(from_day), to=ymd(today)),
        days_refreshed=result.days_refreshed,
        concurrency=concurrency,
    )
