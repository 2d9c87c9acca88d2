from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from contrib_leaderboard.core.dates import DayLike, add_days, start_of_utc_day
from contrib_leaderboard.db.models.contribution import ContribProvider


class ProviderError(Exception):
    """Transport or protocol failure talking to a contribution provider."""


class ProviderRateLimitedError(ProviderError):
    """Provider kept answering HTTP 429 after the allowed retry."""

    def __init__(self, message: str, retry_after: float = 1.0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


@dataclass(frozen=True)
class TimeRange:
    """Half-open UTC interval ``[start, end)``."""

    start: datetime
    end: datetime

    @classmethod
    def for_day(cls, day: DayLike) -> "TimeRange":
        start = start_of_utc_day(day)
        return cls(start=start, end=add_days(start, 1))

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass
class ContributionCounts:
    """Created contributions for one identity over a time range.

    ``found`` is False when the identity did not resolve on the provider; the
    counts are then all zero, which is what gets persisted.
    """

    commits: int = 0
    prs: int = 0
    issues: int = 0
    found: bool = True

    @property
    def total(self) -> int:
        return self.commits + self.prs + self.issues


class ContributionProvider(ABC):
    """Common interface over GitHub and GitLab activity sources."""

    name: ContribProvider

    @abstractmethod
    async def get_totals_for_window(
        self,
        identity: str,
        time_range: TimeRange,
    ) -> ContributionCounts:
        """Count the identity's commits, PRs/MRs and issues within ``time_range``."""

    async def get_totals_for_day(self, identity: str, day: DayLike) -> ContributionCounts:
        return await self.get_totals_for_window(identity, TimeRange.for_day(day))
