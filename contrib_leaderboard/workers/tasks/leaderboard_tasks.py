import asyncio
from datetime import datetime

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contrib_leaderboard.core.config import settings
from contrib_leaderboard.core.dates import add_days, utc_today, ymd, yyyymmdd
from contrib_leaderboard.core.redis import create_redis
from contrib_leaderboard.db.database import create_worker_session_maker
from contrib_leaderboard.services.aggregator import (
    AggregatorDeps,
    ContributionAggregator,
    RefreshUserDayRangeArgs,
    active_providers,
    clamp_concurrency,
)
from contrib_leaderboard.services.leaderboard_cache import LeaderboardCache
from contrib_leaderboard.services.lock import (
    DistributedLock,
    LockInUseError,
    backfill_lock_key,
    daily_lock_key,
)
from contrib_leaderboard.services.user_meta import UserMeta, UserMetaStore
from contrib_leaderboard.workers.celery_app import celery_app

logger = structlog.get_logger()

def run_async(coro):
    """Run async code in sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        # Properly cleanup pending tasks
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


def _range_args(
    user_id: str,
    github_login: str | None,
    gitlab_username: str | None,
    from_day: datetime,
    to_day: datetime,
    concurrency: int,
) -> RefreshUserDayRangeArgs:
    return RefreshUserDayRangeArgs(
        user_id=user_id,
        from_day_utc=from_day,
        to_day_utc=to_day,
        github_login=github_login,
        gitlab_username=gitlab_username,
        github_token=settings.github_token,
        gitlab_token=settings.gitlab_token,
        gitlab_base_url=settings.gitlab_base_url,
        concurrency=concurrency,
        sync_leaderboards=True,
    )


async def refresh_known_users(
    session_factory: async_sessionmaker[AsyncSession],
    redis: Redis,
    limit: int = 1000,
    concurrency: int = 4,
    dry_run: bool = False,
    today: datetime | None = None,
    aggregator: ContributionAggregator | None = None,
) -> dict:
    """Refresh yesterday..today for every known user with an identity.

    Users run through a pool of ``concurrency`` workers. Each provider is
    guarded by the day's lock; a user whose lock is held elsewhere is
    skipped. Failures are collected per user and never abort the sweep.
    """
    today = today or utc_today()
    yesterday = add_days(today, -1)
    window = {"from": ymd(yesterday), "to": ymd(today)}
    workers = clamp_concurrency(concurrency)

    user_ids = (await LeaderboardCache(redis).all_known_user_ids())[: max(limit, 1)]
    if not user_ids:
        logger.info("No known users to refresh")
        return {"scanned": 0, "processed": 0, "skipped": 0, "errors": [], "window": window}

    meta_store = UserMetaStore(redis, session_factory=session_factory)
    metas = await meta_store.get_user_metas(user_ids)

    if dry_run:
        return {
            "dry_run": True,
            "scanned": len(user_ids),
            "sample": [
                {
                    "user_id": m.user_id,
                    "github_login": m.github_login,
                    "gitlab_username": m.gitlab_username,
                }
                for m in metas[:10]
            ],
            "window": window,
        }

    aggregator = aggregator or ContributionAggregator(
        AggregatorDeps(session_factory=session_factory, redis=redis)
    )
    lock = DistributedLock(redis)
    semaphore = asyncio.Semaphore(workers)
    stats: dict = {"processed": 0, "skipped": 0, "errors": []}

    async def refresh_one(meta: UserMeta) -> None:
        if not meta.github_login and not meta.gitlab_username:
            stats["skipped"] += 1
            return

        keys = [
            daily_lock_key(p, meta.user_id, yyyymmdd(today))
            for p in active_providers(
                meta.github_login, meta.gitlab_username, settings.github_token
            )
        ]
        args = _range_args(
            meta.user_id,
            meta.github_login,
            meta.gitlab_username,
            yesterday,
            today,
            workers,
        )

        async with semaphore:
            try:
                await lock.with_locks(
                    keys,
                    settings.leaderboard_lock_ttl_seconds,
                    lambda: aggregator.refresh_user_day_range(args),
                )
            except LockInUseError as e:
                logger.info("Daily refresh locked, skipping", user_id=meta.user_id, key=e.key)
                stats["skipped"] += 1
                return
            except Exception as e:
                logger.error("Daily refresh failed", user_id=meta.user_id, error=str(e))
                stats["errors"].append({"user_id": meta.user_id, "error": str(e)})
                return

        stats["processed"] += 1

    await asyncio.gather(*(refresh_one(m) for m in metas))

    logger.info(
        "Daily refresh completed",
        scanned=len(user_ids),
        processed=stats["processed"],
        skipped=stats["skipped"],
        errors=len(stats["errors"]),
    )
    return {"scanned": len(user_ids), **stats, "window": window}


@celery_app.task
def refresh_all_users_daily(
    limit: int | None = None,
    concurrency: int | None = None,
    dry_run: bool = False,
) -> dict:
    """Periodic refresh of yesterday and today for every known user."""
    return run_async(
        _refresh_all_users_daily_async(
            limit or settings.leaderboard_daily_user_limit,
            concurrency or settings.leaderboard_default_concurrency,
            dry_run,
        )
    )


async def _refresh_all_users_daily_async(limit: int, concurrency: int, dry_run: bool) -> dict:
    redis = create_redis()
    try:
        return await refresh_known_users(
            create_worker_session_maker(), redis, limit, concurrency, dry_run
        )
    finally:
        await redis.aclose()


@celery_app.task
def backfill_user(
    user_id: str,
    github_login: str | None = None,
    gitlab_username: str | None = None,
    days: int = 30,
) -> dict:
    """Backfill the last ``days`` days for one user and record provider meta."""
    return run_async(_backfill_user_async(user_id, github_login, gitlab_username, days))


async def _backfill_user_async(
    user_id: str,
    github_login: str | None,
    gitlab_username: str | None,
    days: int,
) -> dict:
    days = min(max(days, 1), 365)
    today = utc_today()
    from_day = add_days(today, -(days - 1))
    redis = create_redis()

    try:
        aggregator = ContributionAggregator(
            AggregatorDeps(session_factory=create_worker_session_maker(), redis=redis)
        )
        keys = [
            backfill_lock_key(p, user_id)
            for p in active_providers(github_login, gitlab_username, settings.github_token)
        ]
        args = _range_args(
            user_id,
            github_login,
            gitlab_username,
            from_day,
            today,
            settings.leaderboard_default_concurrency,
        )

        try:
            result = await DistributedLock(redis).with_locks(
                keys,
                min(15 * 60, max(2 * 60, days * 2)),
                lambda: aggregator.refresh_user_day_range(args),
            )
        except LockInUseError as e:
            logger.info("Backfill already running, skipping", user_id=user_id, key=e.key)
            return {"status": "skipped", "user_id": user_id, "lock": e.key}

        meta_store = UserMetaStore(redis, session_factory=aggregator.deps.session_factory)
        await meta_store.set_user_meta_from_providers(user_id, github_login, gitlab_username)
    finally:
        await redis.aclose()

    logger.info("Backfill task completed", user_id=user_id, days=days)
    return {
        "status": "completed",
        "user_id": user_id,
        "days_refreshed": len(result.days_refreshed),
    }


@celery_app.task
def sync_user_leaderboards(user_id: str) -> dict:
    """Push one user's stored totals into the Redis leaderboards."""
    return run_async(_sync_user_leaderboards_async(user_id))


async def _sync_user_leaderboards_async(user_id: str) -> dict:
    redis = create_redis()
    try:
        async with create_worker_session_maker()() as db:
            await LeaderboardCache(redis).sync_user_leaderboards(db, user_id)
    finally:
        await redis.aclose()

    return {"status": "completed", "user_id": user_id}
