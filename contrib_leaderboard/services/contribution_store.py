from dataclasses import dataclass
from datetime import UTC, date, datetime

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contrib_leaderboard.core.dates import DayLike, add_days, start_of_utc_day
from contrib_leaderboard.db.models.contribution import (
    ContribDaily,
    ContribProvider,
    ContribTotals,
)

logger = structlog.get_logger()

DAILY_TOTAL = ContribDaily.commits + ContribDaily.prs + ContribDaily.issues


@dataclass(frozen=True)
class WindowTotals:
    all_time: int
    last_30d: int
    last_365d: int


def _insert(session: AsyncSession, table):
    """Dialect-specific INSERT supporting ``ON CONFLICT DO UPDATE``."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


def _as_date(day: DayLike) -> date:
    return start_of_utc_day(day).date()


class ContributionStore:
    """Relational persistence for daily counts and rolling-window totals.

    Every operation runs in its own session so callers may fan out
    concurrently without sharing a session across tasks.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def upsert_daily(
        self,
        user_id: str,
        provider: ContribProvider,
        day: DayLike,
        commits: int,
        prs: int,
        issues: int,
    ) -> None:
        """Write the latest known counts for one day, overwriting previous ones."""
        values = {
            "commits": max(0, commits),
            "prs": max(0, prs),
            "issues": max(0, issues),
        }
        async with self.session_factory() as session, session.begin():
            stmt = _insert(session, ContribDaily).values(
                user_id=user_id,
                provider=provider,
                date_utc=_as_date(day),
                updated_at=func.now(),
                **values,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "provider", "date_utc"],
                set_={**values, "updated_at": func.now()},
            )
            await session.execute(stmt)

    async def _sum(
        self,
        session: AsyncSession,
        user_id: str,
        provider: ContribProvider,
        from_inclusive: date | None = None,
        to_exclusive: date | None = None,
    ) -> int:
        conditions = [ContribDaily.user_id == user_id, ContribDaily.provider == provider]
        if from_inclusive is not None:
            conditions.append(ContribDaily.date_utc >= from_inclusive)
        if to_exclusive is not None:
            conditions.append(ContribDaily.date_utc < to_exclusive)

        result = await session.execute(
            select(func.coalesce(func.sum(DAILY_TOTAL), 0)).where(and_(*conditions))
        )
        return int(result.scalar() or 0)

    async def compute_window_totals(
        self,
        session: AsyncSession,
        user_id: str,
        provider: ContribProvider,
        now: DayLike,
    ) -> WindowTotals:
        today = start_of_utc_day(now)
        tomorrow = add_days(today, 1).date()

        return WindowTotals(
            all_time=await self._sum(session, user_id, provider),
            last_30d=await self._sum(
                session, user_id, provider, add_days(today, -30).date(), tomorrow
            ),
            last_365d=await self._sum(
                session, user_id, provider, add_days(today, -365).date(), tomorrow
            ),
        )

    async def recompute_provider_totals(
        self,
        user_id: str,
        provider: ContribProvider,
        now: DayLike | None = None,
    ) -> WindowTotals:
        """Recompute the user's rolling totals for ``provider`` from daily rows.

        Windows are anchored at ``now`` (default: current wall-clock time):
        30d is ``[today-30, tomorrow)``, 365d is ``[today-365, tomorrow)``.
        """
        anchor = now if now is not None else datetime.now(UTC)

        async with self.session_factory() as session, session.begin():
            totals = await self.compute_window_totals(session, user_id, provider, anchor)

            values = {
                "all_time": totals.all_time,
                "last_30d": totals.last_30d,
                "last_365d": totals.last_365d,
            }
            stmt = _insert(session, ContribTotals).values(
                user_id=user_id,
                provider=provider,
                updated_at=func.now(),
                **values,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "provider"],
                set_={**values, "updated_at": func.now()},
            )
            await session.execute(stmt)

        logger.debug(
            "Recomputed contribution totals",
            user_id=user_id,
            provider=provider.value,
            all_time=totals.all_time,
            last_30d=totals.last_30d,
            last_365d=totals.last_365d,
        )
        return totals

    async def get_daily(
        self,
        user_id: str,
        provider: ContribProvider,
        day: DayLike,
    ) -> ContribDaily | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContribDaily).where(
                    ContribDaily.user_id == user_id,
                    ContribDaily.provider == provider,
                    ContribDaily.date_utc == _as_date(day),
                )
            )
            return result.scalar_one_or_none()

    async def get_totals(self, user_id: str) -> list[ContribTotals]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContribTotals).where(ContribTotals.user_id == user_id)
            )
            return list(result.scalars().all())
