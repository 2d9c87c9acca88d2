"""Contribution aggregator.

Per-day provider fetches are upserted into ``contrib_daily`` (idempotent,
latest value wins) and rolled up into ``contrib_totals``. Multi-day ranges
defer the roll-up and recompute once per provider at the end.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contrib_leaderboard.core.dates import DayLike, day_range, start_of_utc_day, ymd
from contrib_leaderboard.db.models.contribution import ContribProvider
from contrib_leaderboard.services.contribution_store import ContributionStore
from contrib_leaderboard.services.leaderboard_cache import LeaderboardCache
from contrib_leaderboard.services.providers import (
    ContributionCounts,
    ContributionProvider,
    GitHubContributionProvider,
    GitLabContributionProvider,
)

logger = structlog.get_logger()

DEFAULT_GITLAB_BASE_URL = "https://gitlab.com"
MIN_CONCURRENCY, MAX_CONCURRENCY = 1, 8
DEFAULT_CONCURRENCY = 4

GitHubProviderFactory = Callable[[str], ContributionProvider]
GitLabProviderFactory = Callable[[str, str | None], ContributionProvider]


def _default_github_provider(token: str) -> ContributionProvider:
    return GitHubContributionProvider(token=token)


def _default_gitlab_provider(base_url: str, token: str | None) -> ContributionProvider:
    return GitLabContributionProvider(base_url=base_url, token=token)


@dataclass
class AggregatorDeps:
    session_factory: async_sessionmaker[AsyncSession]
    redis: Redis | None = None
    github_provider_factory: GitHubProviderFactory = _default_github_provider
    gitlab_provider_factory: GitLabProviderFactory = _default_gitlab_provider


@dataclass
class RefreshUserDayArgs:
    user_id: str
    day_utc: DayLike
    github_login: str | None = None
    gitlab_username: str | None = None
    github_token: str | None = None
    gitlab_token: str | None = None
    gitlab_base_url: str | None = None
    skip_totals_recompute: bool = False
    # Anchor for the rolling windows; defaults to wall-clock time.
    now: datetime | None = None


@dataclass
class RefreshUserDayRangeArgs:
    user_id: str
    from_day_utc: DayLike
    to_day_utc: DayLike
    github_login: str | None = None
    gitlab_username: str | None = None
    github_token: str | None = None
    gitlab_token: str | None = None
    gitlab_base_url: str | None = None
    concurrency: int = DEFAULT_CONCURRENCY
    now: datetime | None = None
    sync_leaderboards: bool = False


@dataclass
class RefreshResult:
    day: str
    updated_providers: list[str] = field(default_factory=list)
    results: dict[str, ContributionCounts] = field(default_factory=dict)


@dataclass
class RangeResult:
    days_refreshed: list[str] = field(default_factory=list)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def clamp_concurrency(value: int | None) -> int:
    value = DEFAULT_CONCURRENCY if value is None else value
    return max(MIN_CONCURRENCY, min(value, MAX_CONCURRENCY))


def active_providers(
    github_login: str | None,
    gitlab_username: str | None,
    github_token: str | None,
) -> list[ContribProvider]:
    """Providers a refresh would touch. GitHub also needs a token."""
    providers = []
    if _clean(github_login) and github_token:
        providers.append(ContribProvider.GITHUB)
    if _clean(gitlab_username):
        providers.append(ContribProvider.GITLAB)
    return providers


class ContributionAggregator:
    """Orchestrates providers, the contribution store and leaderboard sync."""

    def __init__(self, deps: AggregatorDeps) -> None:
        self.deps = deps
        self.store = ContributionStore(deps.session_factory)

    def _provider_for(
        self,
        provider: ContribProvider,
        github_token: str | None,
        gitlab_token: str | None,
        gitlab_base_url: str | None,
    ) -> ContributionProvider:
        if provider == ContribProvider.GITHUB:
            return self.deps.github_provider_factory(github_token or "")
        base_url = _clean(gitlab_base_url) or DEFAULT_GITLAB_BASE_URL
        return self.deps.gitlab_provider_factory(base_url, gitlab_token)

    async def _refresh_provider_day(
        self,
        args: RefreshUserDayArgs,
        provider: ContribProvider,
        identity: str,
        day: datetime,
    ) -> ContributionCounts:
        source = self._provider_for(
            provider, args.github_token, args.gitlab_token, args.gitlab_base_url
        )
        counts = await source.get_totals_for_day(identity, day)

        # GitLab merge requests land in the generic ``prs`` column.
        await self.store.upsert_daily(
            args.user_id,
            provider,
            day,
            commits=counts.commits,
            prs=counts.prs,
            issues=counts.issues,
        )

        if not args.skip_totals_recompute:
            await self.store.recompute_provider_totals(args.user_id, provider, now=args.now)

        return counts

    async def refresh_user_day(self, args: RefreshUserDayArgs) -> RefreshResult:
        """Fetch one UTC day from each configured provider and persist it.

        GitHub and GitLab are independent branches: a failure in one does
        not stop the other. Once both have run, the first error is raised.
        """
        day = start_of_utc_day(args.day_utc)
        result = RefreshResult(day=ymd(day))
        identities = {
            ContribProvider.GITHUB: _clean(args.github_login),
            ContribProvider.GITLAB: _clean(args.gitlab_username),
        }
        errors: list[Exception] = []

        for provider in active_providers(
            args.github_login, args.gitlab_username, args.github_token
        ):
            try:
                counts = await self._refresh_provider_day(
                    args, provider, identities[provider], day
                )
            except Exception as e:
                logger.error(
                    "Provider refresh failed",
                    user_id=args.user_id,
                    provider=provider.value,
                    day=result.day,
                    error=str(e),
                )
                errors.append(e)
                continue

            result.results[provider.value] = counts
            result.updated_providers.append(provider.value)

        if errors:
            raise errors[0]

        logger.info(
            "Refreshed user day",
            user_id=args.user_id,
            day=result.day,
            providers=result.updated_providers,
        )
        return result

    async def refresh_user_day_range(self, args: RefreshUserDayRangeArgs) -> RangeResult:
        """Refresh every UTC day in ``[from_day_utc, to_day_utc]``.

        Days run through a worker pool of ``concurrency`` slots (clamped to
        1..8); a new day starts as soon as a slot frees. Totals are
        recomputed once per provider after every day has been written,
        anchored at ``args.now`` or the current wall-clock time.
        """
        from_day = start_of_utc_day(args.from_day_utc)
        to_day = start_of_utc_day(args.to_day_utc)
        if from_day > to_day:
            raise ValueError("from_day_utc must be <= to_day_utc")

        concurrency = clamp_concurrency(args.concurrency)
        semaphore = asyncio.Semaphore(concurrency)
        day_args = RefreshUserDayArgs(
            user_id=args.user_id,
            day_utc=from_day,
            github_login=args.github_login,
            gitlab_username=args.gitlab_username,
            github_token=args.github_token,
            gitlab_token=args.gitlab_token,
            gitlab_base_url=args.gitlab_base_url,
            skip_totals_recompute=True,
        )

        async def run(day: datetime) -> str:
            async with semaphore:
                refreshed = await self.refresh_user_day(replace(day_args, day_utc=day))
                return refreshed.day

        outcomes = await asyncio.gather(
            *(run(day) for day in day_range(from_day, to_day)),
            return_exceptions=True,
        )
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        if failures:
            logger.error(
                "Range refresh failed",
                user_id=args.user_id,
                from_day=ymd(from_day),
                to_day=ymd(to_day),
                failed_days=len(failures),
            )
            raise failures[0]

        now = args.now or datetime.now(UTC)
        for provider in active_providers(
            args.github_login, args.gitlab_username, args.github_token
        ):
            await self.store.recompute_provider_totals(args.user_id, provider, now=now)

        if args.sync_leaderboards and self.deps.redis is not None:
            async with self.deps.session_factory() as session:
                await LeaderboardCache(self.deps.redis).sync_user_leaderboards(
                    session, args.user_id
                )

        days = sorted(o for o in outcomes if isinstance(o, str))
        logger.info(
            "Refreshed user day range",
            user_id=args.user_id,
            from_day=ymd(from_day),
            to_day=ymd(to_day),
            days=len(days),
            concurrency=concurrency,
        )
        return RangeResult(days_refreshed=days)
