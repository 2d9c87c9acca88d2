import uuid
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from contrib_leaderboard.api.app import create_app
from contrib_leaderboard.api.dependencies import get_aggregator, get_redis_client
from contrib_leaderboard.core.config import settings
from contrib_leaderboard.db import get_db, get_session_factory
from contrib_leaderboard.db.models import ContribProvider
from contrib_leaderboard.services.aggregator import AggregatorDeps, ContributionAggregator
from contrib_leaderboard.services.contribution_store import ContributionStore
from contrib_leaderboard.services.leaderboard_cache import COMBINED_KEYS
from contrib_leaderboard.services.providers import ContributionCounts, ProviderError
from contrib_leaderboard.services.user_meta import meta_key

pytestmark = pytest.mark.integration

AUTH = {"Authorization": f"Bearer {settings.cron_secret}"}


@pytest.fixture
def gitlab(static_provider):
    return static_provider(ContribProvider.GITLAB, default=ContributionCounts(commits=1, prs=1))


@pytest.fixture
async def client(session_factory, redis, gitlab) -> AsyncGenerator[AsyncClient, None]:
    """API client wired to SQLite, fake Redis and a canned GitLab provider."""
    app = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session
            await session.commit()

    def override_get_aggregator() -> ContributionAggregator:
        return ContributionAggregator(
            AggregatorDeps(
                session_factory=session_factory,
                redis=redis,
                gitlab_provider_factory=lambda base_url, token: gitlab,
            )
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis_client] = lambda: redis
    app.dependency_overrides[get_aggregator] = override_get_aggregator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def _seed(session_factory, user_id: str, provider: ContribProvider, commits: int) -> None:
    store = ContributionStore(session_factory)
    await store.upsert_daily(user_id, provider, "2025-01-05", commits=commits, prs=0, issues=0)
    await store.recompute_provider_totals(user_id, provider, now="2025-01-05")


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_leaderboard_empty(client: AsyncClient) -> None:
    response = await client.get("/api/v1/leaderboard")
    assert response.status_code == 200
    data = response.json()
    assert data["entries"] == []
    assert data["nextCursor"] is None
    assert data["source"] == "db"
    assert data["window"] == "30d"
    assert data["provider"] == "combined"


@pytest.mark.asyncio
async def test_leaderboard_from_redis(client: AsyncClient, redis) -> None:
    await redis.zadd(COMBINED_KEYS["all"], {"a": 2, "b": 9})

    response = await client.get("/api/v1/leaderboard", params={"window": "all", "limit": 1})

    data = response.json()
    assert data["source"] == "redis"
    assert data["entries"] == [{"userId": "b", "score": 9}]
    assert data["nextCursor"] == 1


@pytest.mark.asyncio
async def test_leaderboard_rejects_unknown_window(client: AsyncClient) -> None:
    response = await client.get("/api/v1/leaderboard", params={"window": "7d"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_profiles(client: AsyncClient, redis) -> None:
    await redis.hset(meta_key("user-1"), mapping={"gitlabUsername": "tanuki"})

    response = await client.post("/api/v1/leaderboard/profiles", json={"userIds": ["user-1"]})

    assert response.status_code == 200
    (entry,) = response.json()["entries"]
    assert entry["userId"] == "user-1"
    assert entry["username"] == "tanuki"
    assert entry["avatarUrl"] == "https://gitlab.com/tanuki.png?width=80"


@pytest.mark.asyncio
async def test_profiles_requires_ids(client: AsyncClient) -> None:
    response = await client.post("/api/v1/leaderboard/profiles", json={"userIds": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_details_breakdown(client: AsyncClient, session_factory) -> None:
    user = str(uuid.uuid4())
    await _seed(session_factory, user, ContribProvider.GITHUB, 3)
    await _seed(session_factory, user, ContribProvider.GITLAB, 4)

    response = await client.post(
        "/api/v1/leaderboard/details", json={"userIds": [user], "window": "all"}
    )

    assert response.status_code == 200
    assert response.json()["entries"] == [
        {"userId": user, "github": 3, "gitlab": 4, "total": 7}
    ]


@pytest.mark.asyncio
async def test_export_csv(client: AsyncClient, session_factory, redis) -> None:
    user = str(uuid.uuid4())
    await _seed(session_factory, user, ContribProvider.GITHUB, 5)
    await redis.zadd(COMBINED_KEYS["30d"], {user: 5})
    await redis.hset(meta_key(user), mapping={"githubLogin": "octocat"})

    response = await client.get("/api/v1/leaderboard/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["cache-control"] == "no-store"
    assert "leaderboard_combined_30d_" in response.headers["content-disposition"]
    header, row = response.text.strip().split("\n")
    assert header == "rank,userId,username,githubLogin,gitlabUsername,total,github,gitlab"
    assert row == f'1,"{user}","octocat","octocat","",5,5,0'


@pytest.mark.asyncio
async def test_internal_requires_cron_secret(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={"userId": "u1", "gitlabUsername": "tanuki"},
    )
    assert response.status_code == 401

    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={"userId": "u1", "gitlabUsername": "tanuki"},
        headers={"Authorization": "Bearer wrong"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_day_range(client: AsyncClient, redis, gitlab, session_factory) -> None:
    user = str(uuid.uuid4())

    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={
            "userId": user,
            "gitlabUsername": "tanuki",
            "fromDayUtc": "2025-01-01",
            "toDayUtc": "2025-01-03",
            "concurrency": 2,
        },
        headers=AUTH,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["providers"] == ["gitlab"]
    assert data["range"] == {"from": "2025-01-01", "to": "2025-01-03"}
    assert data["daysRefreshed"] == ["2025-01-01", "2025-01-02", "2025-01-03"]
    assert data["concurrency"] == 2

    (totals,) = await ContributionStore(session_factory).get_totals(user)
    assert totals.all_time == 6
    assert await redis.zscore(COMBINED_KEYS["all"], user) == 6
    # Refresh locks are released afterwards.
    assert await redis.keys("lock:*") == []


@pytest.mark.asyncio
async def test_refresh_day_defaults_to_yesterday_and_today(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={"userId": str(uuid.uuid4()), "gitlabUsername": "tanuki"},
        headers=AUTH,
    )

    data = response.json()
    assert len(data["daysRefreshed"]) == 2
    assert data["range"]["to"] == data["daysRefreshed"][-1]
    assert data["concurrency"] == 6


@pytest.mark.asyncio
async def test_refresh_day_rejects_reversed_range(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={
            "userId": str(uuid.uuid4()),
            "gitlabUsername": "tanuki",
            "fromDayUtc": "2025-01-03",
            "toDayUtc": "2025-01-01",
        },
        headers=AUTH,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_refresh_day_requires_identity(client: AsyncClient) -> None:
    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={"userId": str(uuid.uuid4())},
        headers=AUTH,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_refresh_day_conflict_when_locked(client: AsyncClient, redis) -> None:
    user = str(uuid.uuid4())
    await redis.set(f"lock:refresh:gitlab:{user}:2025-01-01:2025-01-02", "1", ex=60)

    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={
            "userId": user,
            "gitlabUsername": "tanuki",
            "fromDayUtc": "2025-01-01",
            "toDayUtc": "2025-01-02",
        },
        headers=AUTH,
    )

    assert response.status_code == 409
    assert response.json()["detail"] == "Conflict: refresh already running for gitlab"


@pytest.mark.asyncio
async def test_refresh_day_skips_github_without_token(
    client: AsyncClient, redis, gitlab, monkeypatch
) -> None:
    monkeypatch.setattr(settings, "github_token", None)
    user = str(uuid.uuid4())
    # A held GitHub lock does not matter when GitHub is not refreshed.
    await redis.set(f"lock:refresh:github:{user}:2025-01-01:2025-01-01", "1", ex=60)

    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={
            "userId": user,
            "githubLogin": "octocat",
            "gitlabUsername": "tanuki",
            "fromDayUtc": "2025-01-01",
            "toDayUtc": "2025-01-01",
        },
        headers=AUTH,
    )

    assert response.status_code == 200
    assert response.json()["providers"] == ["gitlab"]
    assert len(gitlab.calls) == 1


@pytest.mark.asyncio
async def test_backfill_reports_active_providers_only(
    client: AsyncClient, redis, monkeypatch
) -> None:
    monkeypatch.setattr(settings, "github_token", None)
    user = str(uuid.uuid4())
    await redis.set(f"lock:backfill:github:{user}", "1", ex=60)

    response = await client.post(
        "/api/v1/internal/leaderboard/backfill",
        json={"userId": user, "githubLogin": "octocat", "gitlabUsername": "tanuki", "days": 1},
        headers=AUTH,
    )

    assert response.status_code == 200
    assert response.json()["providers"] == ["gitlab"]
    assert await redis.hget(meta_key(user), "username") == "octocat"


@pytest.mark.asyncio
async def test_refresh_day_provider_failure(client: AsyncClient, gitlab) -> None:
    gitlab.error = ProviderError("GitLab HTTP 500: oops")

    response = await client.post(
        "/api/v1/internal/leaderboard/refresh-day",
        json={
            "userId": str(uuid.uuid4()),
            "gitlabUsername": "tanuki",
            "fromDayUtc": "2025-01-01",
            "toDayUtc": "2025-01-01",
        },
        headers=AUTH,
    )

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_backfill(client: AsyncClient, redis, gitlab) -> None:
    user = str(uuid.uuid4())

    response = await client.post(
        "/api/v1/internal/leaderboard/backfill",
        json={"userId": user, "gitlabUsername": "tanuki", "days": 5},
        headers=AUTH,
    )

    assert response.status_code == 200
    data = response.json()
    assert len(data["daysRefreshed"]) == 5
    assert data["concurrency"] == 6
    assert data["range"]["from"] == data["daysRefreshed"][0]
    assert len(gitlab.calls) == 5
    assert await redis.hget(meta_key(user), "username") == "tanuki"
    assert await redis.zscore(COMBINED_KEYS["all"], user) == 10


@pytest.mark.asyncio
async def test_backfill_conflict_when_locked(client: AsyncClient, redis) -> None:
    user = str(uuid.uuid4())
    await redis.set(f"lock:backfill:gitlab:{user}", "1", ex=60)

    response = await client.post(
        "/api/v1/internal/leaderboard/backfill",
        json={"userId": user, "gitlabUsername": "tanuki"},
        headers=AUTH,
    )

    assert response.status_code == 409
    assert "backfill already running for gitlab" in response.json()["detail"]
