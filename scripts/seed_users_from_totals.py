#!/usr/bin/env python
"""Seed the Redis set lb:users from the distinct user ids in contrib_totals."""

import asyncio

from contrib_leaderboard.core.redis import close_redis, get_redis
from contrib_leaderboard.db.database import async_session_maker
from contrib_leaderboard.services.leaderboard_cache import LeaderboardCache


async def main() -> None:
    async with async_session_maker() as session:
        seeded = await LeaderboardCache(get_redis()).seed_known_users(session)
    await close_redis()

    if seeded == 0:
        print("No users found in contrib_totals")
        return
    print(f"Seeded {seeded} userIds into Redis set lb:users")


if __name__ == "__main__":
    asyncio.run(main())
