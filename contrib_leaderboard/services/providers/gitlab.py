from dataclasses import dataclass
from datetime import datetime

import httpx
import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
)

from contrib_leaderboard.core.config import settings
from contrib_leaderboard.db.models.contribution import ContribProvider
from contrib_leaderboard.services.providers.base import (
    ContributionCounts,
    ContributionProvider,
    ProviderError,
    ProviderRateLimitedError,
    TimeRange,
)

logger = structlog.get_logger()

DEFAULT_BASE_URL = "https://gitlab.com"
MIN_PER_PAGE, MAX_PER_PAGE = 20, 100
MIN_PAGES, MAX_PAGES = 1, 50
MIN_RETRY_AFTER, MAX_RETRY_AFTER = 1.0, 10.0


class GitLabUser(BaseModel):
    id: int
    username: str
    name: str | None = None


class PushData(BaseModel):
    commit_count: int | None = None


class GitLabEvent(BaseModel):
    id: int
    action_name: str | None = None
    target_type: str | None = None
    created_at: datetime
    push_data: PushData | None = None


_users_adapter = TypeAdapter(list[GitLabUser])
_events_adapter = TypeAdapter(list[GitLabEvent])


@dataclass
class GitLabContributionTotals(ContributionCounts):
    username: str = ""
    pages_fetched: int = 0
    per_page: int = 0

    @property
    def mrs(self) -> int:
        return self.prs


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _retry_after_seconds(response: httpx.Response) -> float:
    raw = response.headers.get("Retry-After")
    try:
        seconds = float(raw) if raw else MIN_RETRY_AFTER
    except ValueError:
        seconds = MIN_RETRY_AFTER
    return clamp(seconds, MIN_RETRY_AFTER, MAX_RETRY_AFTER)


def _wait_retry_after(retry_state: RetryCallState) -> float:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, ProviderRateLimitedError):
        return exc.retry_after
    return MIN_RETRY_AFTER


def reduce_contribution_counts(events: list[GitLabEvent]) -> tuple[int, int, int]:
    """Count created contributions: pushed commits, opened MRs, opened issues.

    Closes, merges, comments and every other action are ignored.
    """
    commits = mrs = issues = 0

    for event in events:
        action = (event.action_name or "").lower()

        if (
            event.push_data is not None
            and event.push_data.commit_count is not None
            and "push" in action
        ):
            commits += max(0, event.push_data.commit_count)
            continue

        if event.target_type == "MergeRequest" and action == "opened":
            mrs += 1
        elif event.target_type == "Issue" and action == "opened":
            issues += 1

    return commits, mrs, issues


class GitLabContributionProvider(ContributionProvider):
    """Counts contributions by walking a user's GitLab activity-events feed.

    GitLab has no windowed aggregate, so the events endpoint is paged
    newest-first and filtered to the requested window client-side.
    """

    name = ContribProvider.GITLAB

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        per_page: int = 100,
        max_pages: int = 25,
    ) -> None:
        self.base_url = (base_url or "").strip().rstrip("/") or DEFAULT_BASE_URL
        self.token = token
        self.client = client
        self.timeout = timeout if timeout is not None else settings.gitlab_timeout_seconds
        self.per_page = int(clamp(per_page, MIN_PER_PAGE, MAX_PER_PAGE))
        self.max_pages = int(clamp(max_pages, MIN_PAGES, MAX_PAGES))

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["PRIVATE-TOKEN"] = self.token
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @retry(
        retry=retry_if_exception_type(ProviderRateLimitedError),
        stop=stop_after_attempt(2),
        wait=_wait_retry_after,
        reraise=True,
    )
    async def _get(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None}

        try:
            response = await client.get(
                url, params=query, headers=self._headers(), timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"GitLab request failed: {e} ({url})") from e

        if response.status_code == 429:
            wait = _retry_after_seconds(response)
            logger.warning("GitLab rate limited", url=url, retry_after=wait)
            raise ProviderRateLimitedError(f"GitLab HTTP 429: rate limited ({url})", wait)

        if not response.is_success:
            raise ProviderError(
                f"GitLab HTTP {response.status_code}: "
                f"{response.text or response.reason_phrase} ({url})"
            )

        return response

    async def resolve_user_id(
        self,
        client: httpx.AsyncClient,
        username: str,
    ) -> GitLabUser | None:
        response = await self._get(
            client, "/api/v4/users", {"username": username, "per_page": 1}
        )
        try:
            users = _users_adapter.validate_python(response.json())
        except (ValueError, ValidationError) as e:
            raise ProviderError("Unexpected GitLab users response shape") from e
        return users[0] if users else None

    async def fetch_events(
        self,
        client: httpx.AsyncClient,
        user_id: int,
        time_range: TimeRange,
    ) -> tuple[list[GitLabEvent], int]:
        """Return events inside ``time_range`` and the number of pages fetched."""
        page = 1
        pages_fetched = 0
        retained: list[GitLabEvent] = []

        while True:
            response = await self._get(
                client,
                f"/api/v4/users/{user_id}/events",
                {
                    "after": time_range.start.isoformat(),
                    "before": time_range.end.isoformat(),
                    "per_page": self.per_page,
                    "page": page,
                    "scope": "all",
                },
            )
            pages_fetched += 1

            try:
                events = _events_adapter.validate_python(response.json())
            except (ValueError, ValidationError) as e:
                raise ProviderError("Unexpected GitLab events response shape") from e

            in_window = [e for e in events if time_range.contains(e.created_at)]
            retained.extend(in_window)

            # Events come newest-first: a page entirely older than the window
            # means nothing further can match.
            if (
                not in_window
                and events
                and max(e.created_at for e in events) < time_range.start
            ):
                break

            next_page = response.headers.get("X-Next-Page", "")
            if not next_page or next_page == "0":
                break
            try:
                page = int(next_page)
            except ValueError:
                break
            if page <= 0 or page > self.max_pages:
                break

        return retained, pages_fetched

    async def _collect(
        self,
        client: httpx.AsyncClient,
        username: str,
        time_range: TimeRange,
    ) -> GitLabContributionTotals:
        user = await self.resolve_user_id(client, username)
        if user is None:
            logger.warning("GitLab user not found", username=username, base_url=self.base_url)
            return GitLabContributionTotals(username=username, found=False)

        events, pages_fetched = await self.fetch_events(client, user.id, time_range)
        commits, mrs, issues = reduce_contribution_counts(events)

        return GitLabContributionTotals(
            username=user.username,
            commits=commits,
            prs=mrs,
            issues=issues,
            pages_fetched=pages_fetched,
            per_page=self.per_page,
        )

    async def get_totals_for_window(
        self,
        identity: str,
        time_range: TimeRange,
    ) -> GitLabContributionTotals:
        if self.client is not None:
            return await self._collect(self.client, identity, time_range)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._collect(client, identity, time_range)
