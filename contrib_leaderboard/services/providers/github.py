from dataclasses import dataclass

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from contrib_leaderboard.core.config import settings
from contrib_leaderboard.db.models.contribution import ContribProvider
from contrib_leaderboard.services.providers.base import (
    ContributionCounts,
    ContributionProvider,
    ProviderError,
    TimeRange,
)

logger = structlog.get_logger()


CONTRIBUTIONS_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    id
    login
    contributionsCollection(from: $from, to: $to) {
      restrictedContributionsCount
      totalCommitContributions
      totalPullRequestContributions
      totalIssueContributions
    }
  }
  rateLimit {
    cost
    remaining
    resetAt
  }
}
"""


class RateLimitInfo(BaseModel):
    cost: int
    remaining: int
    resetAt: str


class ContributionsCollection(BaseModel):
    restrictedContributionsCount: int | None = None
    totalCommitContributions: int
    totalPullRequestContributions: int
    totalIssueContributions: int


class GraphQLUser(BaseModel):
    id: str
    login: str
    contributionsCollection: ContributionsCollection


class GraphQLData(BaseModel):
    user: GraphQLUser | None = None
    rateLimit: RateLimitInfo | None = None


class GraphQLErrorItem(BaseModel):
    message: str
    type: str | None = None
    path: list[str | int] | None = None


class GraphQLResponse(BaseModel):
    data: GraphQLData | None = None
    errors: list[GraphQLErrorItem] | None = None


@dataclass
class GitHubContributionTotals(ContributionCounts):
    login: str = ""
    rate_limit: RateLimitInfo | None = None


class GitHubContributionProvider(ContributionProvider):
    """Reads daily totals from GitHub's GraphQL ``contributionsCollection``."""

    name = ContribProvider.GITHUB

    def __init__(
        self,
        token: str | None,
        client: httpx.AsyncClient | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.token = token
        self.client = client
        self.endpoint = endpoint or settings.github_graphql_url
        self.timeout = timeout if timeout is not None else settings.github_timeout_seconds

    async def _graphql(self, query: str, variables: dict) -> GraphQLData:
        if not self.token:
            raise ProviderError("GitHub GraphQL token is required. Set GITHUB_TOKEN.")

        headers = {
            "Authorization": f"bearer {self.token}",
            "Content-Type": "application/json",
        }
        payload = {"query": query, "variables": variables}

        try:
            if self.client is not None:
                response = await self.client.post(
                    self.endpoint, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(f"GitHub GraphQL request failed: {e}") from e

        if not response.is_success:
            raise ProviderError(
                f"GitHub GraphQL HTTP {response.status_code}: "
                f"{response.text or response.reason_phrase}"
            )

        try:
            parsed = GraphQLResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProviderError("Unexpected GitHub GraphQL response shape") from e

        if parsed.errors:
            messages = "; ".join(err.message for err in parsed.errors)
            raise ProviderError(f"GitHub GraphQL error(s): {messages}")

        if parsed.data is None:
            raise ProviderError("GitHub GraphQL returned no data")

        return parsed.data

    async def get_totals_for_window(
        self,
        identity: str,
        time_range: TimeRange,
    ) -> GitHubContributionTotals:
        data = await self._graphql(
            CONTRIBUTIONS_QUERY,
            {
                "login": identity,
                "from": time_range.start.isoformat(),
                "to": time_range.end.isoformat(),
            },
        )

        if data.user is None:
            # Unknown or invisible login; indistinguishable from zero activity
            # in the stored row, but flagged on the result.
            logger.warning("GitHub login not found", login=identity)
            return GitHubContributionTotals(
                login=identity,
                found=False,
                rate_limit=data.rateLimit,
            )

        cc = data.user.contributionsCollection
        return GitHubContributionTotals(
            login=data.user.login,
            commits=cc.totalCommitContributions,
            prs=cc.totalPullRequestContributions,
            issues=cc.totalIssueContributions,
            rate_limit=data.rateLimit,
        )
