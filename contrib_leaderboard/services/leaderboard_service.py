from dataclasses import dataclass, field

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from contrib_leaderboard.db.models.contribution import ContribProvider, ContribTotals
from contrib_leaderboard.services.leaderboard_cache import (
    LeaderRow,
    ProviderSel,
    WindowKey,
    key_for,
    parse_zrange,
)
from contrib_leaderboard.services.user_meta import UserMeta

logger = structlog.get_logger()

MIN_PAGE_LIMIT, MAX_PAGE_LIMIT = 1, 100

WINDOW_COLUMNS = {
    "all": ContribTotals.all_time,
    "30d": ContribTotals.last_30d,
    "365d": ContribTotals.last_365d,
}


@dataclass
class LeaderboardPage:
    entries: list[LeaderRow] = field(default_factory=list)
    next_cursor: int | None = None
    source: str = "db"


@dataclass
class ScoreBreakdown:
    user_id: str
    github: int = 0
    gitlab: int = 0

    @property
    def total(self) -> int:
        return self.github + self.gitlab


@dataclass
class ExportRow:
    rank: int
    user_id: str
    username: str
    github_login: str
    gitlab_username: str
    total: int
    github: int
    gitlab: int


class LeaderboardService:
    """Paginated leaderboard reads, Redis first with a PostgreSQL fallback.

    The two stores are alternatives chosen by availability: any entries in
    Redis win, even if ``contrib_totals`` is fresher.
    """

    def __init__(self, db: AsyncSession, redis: Redis) -> None:
        self.db = db
        self.redis = redis

    async def _top_from_redis(
        self,
        provider: ProviderSel,
        window: WindowKey,
        start: int,
        stop: int,
    ) -> list[LeaderRow]:
        try:
            res = await self.redis.zrange(
                key_for(provider, window), start, stop, desc=True, withscores=True
            )
        except RedisError as e:
            # Unavailable Redis must not fail the read; the DB answers instead.
            logger.error("Redis error reading leaderboard", provider=provider, error=str(e))
            return []
        return parse_zrange(res)

    async def _top_from_db(
        self,
        provider: ProviderSel,
        window: WindowKey,
        limit: int,
        offset: int,
    ) -> list[LeaderRow]:
        column = WINDOW_COLUMNS[window]

        if provider == "combined":
            score = func.sum(column).label("score")
            query = (
                select(ContribTotals.user_id, score)
                .group_by(ContribTotals.user_id)
                .order_by(desc(score), ContribTotals.user_id.desc())
            )
        else:
            query = (
                select(ContribTotals.user_id, column.label("score"))
                .where(ContribTotals.provider == ContribProvider(provider))
                .order_by(column.desc(), ContribTotals.user_id.desc())
            )

        result = await self.db.execute(query.limit(limit).offset(offset))
        return [
            LeaderRow(user_id=str(row.user_id), score=int(row.score or 0))
            for row in result.all()
        ]

    async def get_leaderboard_page(
        self,
        provider: ProviderSel = "combined",
        window: WindowKey = "30d",
        limit: int = 25,
        cursor: int | None = 0,
    ) -> LeaderboardPage:
        limit = min(max(limit, MIN_PAGE_LIMIT), MAX_PAGE_LIMIT)
        start = max(cursor or 0, 0)
        stop = start + limit - 1

        from_redis = await self._top_from_redis(provider, window, start, stop)
        if from_redis:
            next_cursor = start + limit if len(from_redis) == limit else None
            return LeaderboardPage(entries=from_redis, next_cursor=next_cursor, source="redis")

        from_db = await self._top_from_db(provider, window, limit, start)
        next_cursor = start + limit if len(from_db) == limit else None
        return LeaderboardPage(entries=from_db, next_cursor=next_cursor, source="db")

    async def get_score_breakdown(
        self,
        user_ids: list[str],
        window: WindowKey = "30d",
    ) -> list[ScoreBreakdown]:
        """Per-provider scores for ``user_ids``; unknown users get zeros."""
        if not user_ids:
            return []

        column = WINDOW_COLUMNS[window]
        result = await self.db.execute(
            select(ContribTotals.user_id, ContribTotals.provider, column.label("score")).where(
                ContribTotals.user_id.in_(user_ids)
            )
        )

        by_user = {user_id: ScoreBreakdown(user_id=user_id) for user_id in user_ids}
        for row in result.all():
            entry = by_user.get(str(row.user_id))
            if entry is None:
                continue
            if ContribProvider(row.provider) == ContribProvider.GITHUB:
                entry.github = int(row.score or 0)
            else:
                entry.gitlab = int(row.score or 0)

        return [by_user[user_id] for user_id in user_ids]

    async def collect_entries(
        self,
        provider: ProviderSel,
        window: WindowKey,
        limit: int,
        cursor: int = 0,
    ) -> list[LeaderRow]:
        """Page through the leaderboard until ``limit`` rows are gathered."""
        entries: list[LeaderRow] = []
        next_cursor: int | None = cursor

        while next_cursor is not None and len(entries) < limit:
            page = await self.get_leaderboard_page(
                provider, window, min(MAX_PAGE_LIMIT, limit - len(entries)), next_cursor
            )
            entries.extend(page.entries)
            next_cursor = page.next_cursor

        return entries[:limit]

    async def export_rows(
        self,
        window: WindowKey,
        cursor: int,
        entries: list[LeaderRow],
        metas: list[UserMeta],
    ) -> list[ExportRow]:
        """Join ranked entries with profile meta and per-provider breakdown."""
        meta_by_user = {m.user_id: m for m in metas}
        breakdown = {
            b.user_id: b
            for b in await self.get_score_breakdown([e.user_id for e in entries], window)
        }

        rows = []
        for index, entry in enumerate(entries):
            meta = meta_by_user.get(entry.user_id)
            agg = breakdown.get(entry.user_id)
            rows.append(
                ExportRow(
                    rank=cursor + index + 1,
                    user_id=entry.user_id,
                    username=(meta.username if meta else "") or "",
                    github_login=(meta.github_login if meta else "") or "",
                    gitlab_username=(meta.gitlab_username if meta else "") or "",
                    total=agg.total if agg else entry.score,
                    github=agg.github if agg else 0,
                    gitlab=agg.gitlab if agg else 0,
                )
            )
        return rows
