#!/usr/bin/env python
"""Refresh a user's contributions over a day range and print the result.

Prints the stored daily row counts, the totals snapshot and the combined
30-day top 10 after syncing Redis.
"""

import asyncio
import uuid

from sqlalchemy import func, select

from contrib_leaderboard.core.config import settings
from contrib_leaderboard.core.dates import add_days, parse_day, utc_today, ymd
from contrib_leaderboard.core.redis import close_redis, get_redis
from contrib_leaderboard.db.database import async_session_maker
from contrib_leaderboard.db.models import ContribDaily
from contrib_leaderboard.services.aggregator import (
    AggregatorDeps,
    ContributionAggregator,
    RefreshUserDayRangeArgs,
)
from contrib_leaderboard.services.contribution_store import ContributionStore
from contrib_leaderboard.services.leaderboard_cache import LeaderboardCache


async def main(
    user_id: str,
    github_login: str | None,
    gitlab_username: str | None,
    from_day: str | None,
    to_day: str | None,
    days: int,
    concurrency: int,
) -> None:
    today = utc_today()
    end = parse_day(to_day) if to_day else today
    start = parse_day(from_day) if from_day else add_days(end, -(days - 1))
    print(f"User {user_id} window {ymd(start)} -> {ymd(end)} concurrency={concurrency}")

    redis = get_redis()
    try:
        aggregator = ContributionAggregator(
            AggregatorDeps(session_factory=async_session_maker, redis=redis)
        )
        result = await aggregator.refresh_user_day_range(
            RefreshUserDayRangeArgs(
                user_id=user_id,
                from_day_utc=start,
                to_day_utc=end,
                github_login=github_login,
                gitlab_username=gitlab_username,
                github_token=settings.github_token,
                gitlab_token=settings.gitlab_token,
                gitlab_base_url=settings.gitlab_base_url,
                concurrency=concurrency,
                sync_leaderboards=True,
            )
        )
        print(f"Days refreshed: {len(result.days_refreshed)}")

        async with async_session_maker() as session:
            rows = await session.execute(
                select(ContribDaily.provider, func.count())
                .where(
                    ContribDaily.user_id == user_id,
                    ContribDaily.date_utc >= start.date(),
                    ContribDaily.date_utc <= end.date(),
                )
                .group_by(ContribDaily.provider)
            )
            for provider, count in rows.all():
                print(f"contrib_daily {provider.value}: {count} rows")

        for totals in await ContributionStore(async_session_maker).get_totals(user_id):
            print(
                f"contrib_totals {totals.provider.value}: all={totals.all_time} "
                f"30d={totals.last_30d} 365d={totals.last_365d}"
            )

        top = await LeaderboardCache(redis).top_combined(10, "30d")
        print("top_combined(10, 30d):", top)
    finally:
        await close_redis()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Refresh one user's contributions")
    parser.add_argument("--user-id", default=None, help="User UUID (random if omitted)")
    parser.add_argument("--gh", help="GitHub login")
    parser.add_argument("--gl", help="GitLab username")
    parser.add_argument("--from", dest="from_day", help="First day, YYYY-MM-DD")
    parser.add_argument("--to", dest="to_day", help="Last day, YYYY-MM-DD")
    parser.add_argument("--days", type=int, default=14, help="Days back when --from is omitted")
    parser.add_argument("--concurrency", type=int, default=6)
    args = parser.parse_args()

    if not (args.gh or args.gl):
        parser.error("provide at least one provider: --gh <login> or --gl <username>")

    asyncio.run(
        main(
            args.user_id or str(uuid.uuid4()),
            args.gh,
            args.gl,
            args.from_day,
            args.to_day,
            min(max(args.days, 1), 365),
            min(max(args.concurrency, 1), 8),
        )
    )
