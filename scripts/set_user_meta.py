#!/usr/bin/env python
"""Set display meta and provider identities for one user."""

import asyncio

from contrib_leaderboard.core.redis import close_redis, get_redis
from contrib_leaderboard.db.database import async_session_maker
from contrib_leaderboard.services.events import IdentityEvents
from contrib_leaderboard.services.leaderboard_cache import LeaderboardCache
from contrib_leaderboard.services.user_meta import UserMetaInput, UserMetaStore


async def main(
    user_id: str,
    github_login: str | None,
    gitlab_username: str | None,
    name: str | None,
    avatar: str | None,
) -> None:
    redis = get_redis()
    events = IdentityEvents()
    LeaderboardCache(redis).subscribe(events, async_session_maker)
    store = UserMetaStore(redis, events)

    try:
        await store.set_user_meta_from_providers(user_id, github_login, gitlab_username)
        # Explicit display values win over the provider-derived defaults.
        await store.set_display(user_id, name, avatar)
        await store.set_user_meta(
            user_id,
            UserMetaInput(github_login=github_login, gitlab_username=gitlab_username),
        )
        meta = (await store.get_user_metas([user_id]))[0]
    finally:
        await close_redis()

    print(f"OK set lb:user:{user_id} {meta}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Set leaderboard meta for a user")
    parser.add_argument("--user-id", required=True, help="User UUID")
    parser.add_argument("--gh", help="GitHub login")
    parser.add_argument("--gl", help="GitLab username")
    parser.add_argument("--name", help="Display name")
    parser.add_argument("--avatar", help="Avatar URL")
    args = parser.parse_args()

    if not (args.gh or args.gl or args.name or args.avatar):
        parser.error("at least one of --gh, --gl, --name or --avatar is required")

    asyncio.run(main(args.user_id, args.gh, args.gl, args.name, args.avatar))
