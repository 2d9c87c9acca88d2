#!/usr/bin/env python
"""Sync one user's DB totals into the Redis leaderboards, then print the top N."""

import asyncio
import json
from dataclasses import asdict

from contrib_leaderboard.core.redis import close_redis, get_redis
from contrib_leaderboard.db.database import async_session_maker
from contrib_leaderboard.services.leaderboard_cache import WINDOWS, LeaderboardCache


async def main(user_id: str, limit: int, window: str) -> None:
    cache = LeaderboardCache(get_redis())
    try:
        async with async_session_maker() as session:
            await cache.sync_user_leaderboards(session, user_id)
        top = await cache.top_combined(limit, window)
        print(json.dumps([asdict(row) for row in top], indent=2))
    finally:
        await close_redis()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Sync one user into the Redis leaderboards")
    parser.add_argument("user_id", help="User UUID")
    parser.add_argument("limit", nargs="?", type=int, default=5, help="Rows to print")
    parser.add_argument("window", nargs="?", choices=WINDOWS, default="30d")
    args = parser.parse_args()

    asyncio.run(main(args.user_id, args.limit, args.window))
