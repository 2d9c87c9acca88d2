#!/usr/bin/env python
"""Create the contribution tables and seed the known-users set."""

import asyncio

from contrib_leaderboard.core.config import settings
from contrib_leaderboard.core.redis import close_redis, get_redis
from contrib_leaderboard.db.database import async_session_maker, init_db
from contrib_leaderboard.services.leaderboard_cache import LeaderboardCache


async def main() -> None:
    """Main initialization function."""
    print(f"Initializing database: {settings.database_url}")

    # Create tables
    await init_db()
    print("Database tables created")

    # Register any users that already have totals
    async with async_session_maker() as session:
        seeded = await LeaderboardCache(get_redis()).seed_known_users(session)
    print(f"Seeded {seeded} user ids into lb:users")

    await close_redis()
    print("Database initialization complete!")


if __name__ == "__main__":
    asyncio.run(main())
