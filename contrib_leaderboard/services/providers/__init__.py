from contrib_leaderboard.services.providers.base import (
    ContributionCounts,
    ContributionProvider,
    ProviderError,
    ProviderRateLimitedError,
    TimeRange,
)
from contrib_leaderboard.services.providers.github import (
    GitHubContributionProvider,
    GitHubContributionTotals,
)
from contrib_leaderboard.services.providers.gitlab import (
    GitLabContributionProvider,
    GitLabContributionTotals,
)

__all__ = [
    "ContributionCounts",
    "ContributionProvider",
    "ProviderError",
    "ProviderRateLimitedError",
    "TimeRange",
    "GitHubContributionProvider",
    "GitHubContributionTotals",
    "GitLabContributionProvider",
    "GitLabContributionTotals",
]
