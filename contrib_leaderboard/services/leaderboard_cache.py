"""Redis sorted-set projection of ``contrib_totals``.

Only this module writes the leaderboard keys. Scores are copied from the
relational store; Redis is never read back into totals computation.
"""

from dataclasses import dataclass
from typing import Any, Literal

import structlog
from redis.asyncio import Redis
from sqlalchemy import distinct, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contrib_leaderboard.db.models.contribution import ContribProvider, ContribTotals
from contrib_leaderboard.services.events import IdentityEvents, IdentityUpdated

logger = structlog.get_logger()

WindowKey = Literal["all", "30d", "365d"]
ProviderSel = Literal["combined", "github", "gitlab"]

WINDOWS: tuple[WindowKey, ...] = ("all", "30d", "365d")

COMBINED_KEYS: dict[str, str] = {
    "all": "lb:total:all",
    "30d": "lb:total:30d",
    "365d": "lb:total:365d",
}

PROVIDER_KEYS: dict[str, dict[str, str]] = {
    provider.value: {window: f"lb:{provider.value}:{window}" for window in WINDOWS}
    for provider in ContribProvider
}

USER_SET = "lb:users"


def key_for(provider: ProviderSel, window: WindowKey) -> str:
    if provider == "combined":
        return COMBINED_KEYS[window]
    return PROVIDER_KEYS[provider][window]


@dataclass(frozen=True)
class LeaderRow:
    user_id: str
    score: int


def _to_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return "" if value is None else str(value)


def _to_score(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def parse_zrange(res: Any) -> list[LeaderRow]:
    """Normalise a ZRANGE ... WITHSCORES reply into ``LeaderRow`` items.

    Accepts ``[(member, score), ...]`` (redis-py), ``[{"member", "score"}, ...]``
    and the flat ``[member, score, member, score, ...]`` form.
    """
    if not res:
        return []

    first = res[0]
    if isinstance(first, dict):
        rows = [(item.get("member"), item.get("score")) for item in res]
    elif isinstance(first, (tuple, list)):
        rows = [(item[0], item[1] if len(item) > 1 else 0) for item in res]
    else:
        rows = [(res[i], res[i + 1] if i + 1 < len(res) else 0) for i in range(0, len(res), 2)]

    out = []
    for member, score in rows:
        user_id = _to_str(member)
        if user_id:
            out.append(LeaderRow(user_id=user_id, score=_to_score(score)))
    return out


class LeaderboardCache:
    """Pushes users' rolling totals into the leaderboard sorted sets."""

    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    async def sync_user_leaderboards(self, db: AsyncSession, user_id: str) -> None:
        result = await db.execute(
            select(
                ContribTotals.provider,
                ContribTotals.all_time,
                ContribTotals.last_30d,
                ContribTotals.last_365d,
            ).where(ContribTotals.user_id == user_id)
        )
        rows = result.all()

        combined = {"all": 0, "30d": 0, "365d": 0}
        pipe = self.redis.pipeline(transaction=False)

        for row in rows:
            scores = {
                "all": int(row.all_time or 0),
                "30d": int(row.last_30d or 0),
                "365d": int(row.last_365d or 0),
            }
            keys = PROVIDER_KEYS[ContribProvider(row.provider).value]
            for window, score in scores.items():
                combined[window] += score
                pipe.zadd(keys[window], {user_id: score})

        # Combined sets are always written, zeros included, so every known
        # user keeps a rank.
        for window, score in combined.items():
            pipe.zadd(COMBINED_KEYS[window], {user_id: score})

        pipe.sadd(USER_SET, user_id)
        await pipe.execute()

        logger.debug(
            "Synced user leaderboards",
            user_id=user_id,
            providers=len(rows),
            combined_30d=combined["30d"],
        )

    async def remove_user_from_leaderboards(self, user_id: str) -> None:
        keys = list(COMBINED_KEYS.values())
        for provider_keys in PROVIDER_KEYS.values():
            keys.extend(provider_keys.values())

        pipe = self.redis.pipeline(transaction=False)
        for key in keys:
            pipe.zrem(key, user_id)
        await pipe.execute()

        logger.info("Removed user from leaderboards", user_id=user_id)

    async def top_combined(self, limit: int = 10, window: WindowKey = "30d") -> list[LeaderRow]:
        res = await self.redis.zrange(
            COMBINED_KEYS[window], 0, limit - 1, desc=True, withscores=True
        )
        return parse_zrange(res)

    async def all_known_user_ids(self) -> list[str]:
        ids = await self.redis.smembers(USER_SET)
        return sorted(_to_str(i) for i in ids)

    async def seed_known_users(self, db: AsyncSession) -> int:
        """Add every user with stored totals to the known-users set."""
        result = await db.execute(select(distinct(ContribTotals.user_id)))
        user_ids = [str(user_id) for user_id in result.scalars().all()]
        if not user_ids:
            return 0

        pipe = self.redis.pipeline(transaction=False)
        for user_id in user_ids:
            pipe.sadd(USER_SET, user_id)
        await pipe.execute()
        return len(user_ids)

    def subscribe(
        self,
        events: IdentityEvents,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Resync a user's leaderboards whenever their identity changes."""

        async def on_identity_updated(event: IdentityUpdated) -> None:
            async with session_factory() as session:
                await self.sync_user_leaderboards(session, event.user_id)

        events.subscribe(on_identity_updated)
