from dataclasses import dataclass

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contrib_leaderboard.db.database import get_session_factory
from contrib_leaderboard.services.events import IdentityEvents, IdentityUpdated
from contrib_leaderboard.services.leaderboard_cache import USER_SET, LeaderboardCache

logger = structlog.get_logger()


def meta_key(user_id: str) -> str:
    return f"lb:user:{user_id}"


def github_avatar_url(login: str) -> str:
    return f"https://github.com/{login}.png?size=80"


def gitlab_avatar_url(username: str) -> str:
    return f"https://gitlab.com/{username}.png?width=80"


@dataclass
class UserMetaInput:
    github_login: str | None = None
    gitlab_username: str | None = None


@dataclass
class UserMeta:
    user_id: str
    username: str | None = None
    avatar_url: str | None = None
    github_login: str | None = None
    gitlab_username: str | None = None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class UserMetaStore:
    """Minimal display profile per user, kept in a Redis hash."""

    def __init__(
        self,
        redis: Redis,
        events: IdentityEvents | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        """Without an explicit ``events`` hub the store gets its own, with the
        leaderboard cache for ``redis`` subscribed to it.
        """
        self.redis = redis
        if events is None:
            events = IdentityEvents()
            LeaderboardCache(redis).subscribe(events, session_factory or get_session_factory())
        self.events = events

    async def set_user_meta(
        self,
        user_id: str,
        meta: UserMetaInput,
        seed_leaderboards: bool = True,
    ) -> None:
        """Store provider identities and register the user.

        With ``seed_leaderboards`` an ``IdentityUpdated`` event is published;
        the leaderboard cache subscribes to it and resyncs the user.
        """
        updates: dict[str, str] = {}
        github_login = _clean(meta.github_login)
        gitlab_username = _clean(meta.gitlab_username)
        if github_login:
            updates["githubLogin"] = github_login
        if gitlab_username:
            updates["gitlabUsername"] = gitlab_username

        pipe = self.redis.pipeline(transaction=False)
        if updates:
            pipe.hset(meta_key(user_id), mapping=updates)
        pipe.sadd(USER_SET, user_id)
        await pipe.execute()

        if seed_leaderboards:
            await self.events.publish(IdentityUpdated(user_id=user_id))

    async def set_user_meta_from_providers(
        self,
        user_id: str,
        github_login: str | None = None,
        gitlab_username: str | None = None,
    ) -> None:
        """Store identities plus a derived username/avatar (GitHub first)."""
        updates: dict[str, str] = {}

        gh = _clean(github_login)
        if gh:
            updates["githubLogin"] = gh
            updates.setdefault("username", gh)
            updates.setdefault("avatarUrl", github_avatar_url(gh))

        gl = _clean(gitlab_username)
        if gl:
            updates["gitlabUsername"] = gl
            updates.setdefault("username", gl)
            updates.setdefault("avatarUrl", gitlab_avatar_url(gl))

        if updates:
            await self.redis.hset(meta_key(user_id), mapping=updates)

    async def set_display(
        self,
        user_id: str,
        username: str | None = None,
        avatar_url: str | None = None,
    ) -> None:
        updates = {}
        if _clean(username):
            updates["username"] = username.strip()
        if _clean(avatar_url):
            updates["avatarUrl"] = avatar_url.strip()
        if updates:
            await self.redis.hset(meta_key(user_id), mapping=updates)

    async def get_user_metas(self, user_ids: list[str]) -> list[UserMeta]:
        """Bulk read of profile meta; output order matches ``user_ids``."""
        if not user_ids:
            return []

        pipe = self.redis.pipeline(transaction=False)
        for user_id in user_ids:
            pipe.hgetall(meta_key(user_id))
        rows = await pipe.execute()

        metas = []
        for user_id, raw in zip(user_ids, rows, strict=True):
            m = raw or {}
            github_login = m.get("githubLogin") or None
            gitlab_username = m.get("gitlabUsername") or None

            username = m.get("username") or github_login or gitlab_username or user_id[:8]
            avatar_url = m.get("avatarUrl") or None
            if avatar_url is None and github_login:
                avatar_url = github_avatar_url(github_login)
            if avatar_url is None and gitlab_username:
                avatar_url = gitlab_avatar_url(gitlab_username)

            metas.append(
                UserMeta(
                    user_id=user_id,
                    username=username,
                    avatar_url=avatar_url,
                    github_login=github_login,
                    gitlab_username=gitlab_username,
                )
            )
        return metas
