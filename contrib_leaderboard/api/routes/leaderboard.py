import csv
import io
from dataclasses import asdict
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query, Response
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from contrib_leaderboard.api.dependencies import get_redis_client
from contrib_leaderboard.api.schemas.leaderboard import (
    DetailsEntry,
    DetailsRequest,
    DetailsResponse,
    LeaderboardEntry,
    LeaderboardPageResponse,
    ProfileEntry,
    ProfilesResponse,
    ProviderParam,
    UserIdsRequest,
    WindowParam,
)
from contrib_leaderboard.db import get_db
from contrib_leaderboard.services.cache import create_cache_key, get_cached
from contrib_leaderboard.services.leaderboard_service import LeaderboardService
from contrib_leaderboard.services.user_meta import UserMetaStore

router = APIRouter()

DETAILS_CACHE_TTL = 60
EXPORT_HEADER = [
    "rank",
    "userId",
    "username",
    "githubLogin",
    "gitlabUsername",
    "total",
    "github",
    "gitlab",
]


@router.get(
    "",
    response_model=LeaderboardPageResponse,
    summary="Get a leaderboard page",
)
async def get_leaderboard(
    window: WindowParam = Query("30d"),
    provider: ProviderParam = Query("combined"),
    limit: int = Query(25, ge=1, le=100),
    cursor: int | None = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
) -> LeaderboardPageResponse:
    """Ranked users for a provider and window, with cursor pagination."""
    service = LeaderboardService(db, redis)
    page = await service.get_leaderboard_page(provider, window, limit, cursor)
    return LeaderboardPageResponse(
        window=window,
        provider=provider,
        limit=limit,
        cursor=cursor or 0,
        next_cursor=page.next_cursor,
        source=page.source,
        entries=[LeaderboardEntry(user_id=e.user_id, score=e.score) for e in page.entries],
    )


@router.post(
    "/profiles",
    response_model=ProfilesResponse,
    summary="Resolve display profiles",
)
async def get_profiles(
    body: UserIdsRequest,
    redis: Redis = Depends(get_redis_client),
) -> ProfilesResponse:
    metas = await UserMetaStore(redis).get_user_metas(body.user_ids)
    return ProfilesResponse(entries=[ProfileEntry.model_validate(m) for m in metas])


@router.post(
    "/details",
    response_model=DetailsResponse,
    summary="Per-provider score breakdown",
)
async def get_details(
    body: DetailsRequest,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
) -> DetailsResponse:
    service = LeaderboardService(db, redis)

    async def fetch() -> list[dict]:
        breakdown = await service.get_score_breakdown(body.user_ids, body.window)
        return [{**asdict(b), "total": b.total} for b in breakdown]

    key = create_cache_key("leaderboard", "details", body.window, ",".join(body.user_ids))
    rows = await get_cached(redis, key, fetch, ttl=DETAILS_CACHE_TTL)
    return DetailsResponse(
        window=body.window,
        entries=[DetailsEntry.model_validate(r) for r in rows],
    )


@router.get(
    "/export",
    summary="Export the leaderboard as CSV",
)
async def export_leaderboard(
    provider: ProviderParam = Query("combined"),
    window: WindowParam = Query("30d"),
    limit: int = Query(500, ge=1, le=2000),
    cursor: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis_client),
) -> Response:
    service = LeaderboardService(db, redis)
    entries = await service.collect_entries(provider, window, limit, cursor)
    metas = await UserMetaStore(redis).get_user_metas([e.user_id for e in entries])
    rows = await service.export_rows(window, cursor, entries, metas)

    buffer = io.StringIO()
    buffer.write(",".join(EXPORT_HEADER) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    for row in rows:
        writer.writerow(
            [
                row.rank,
                row.user_id,
                row.username,
                row.github_login,
                row.gitlab_username,
                row.total,
                row.github,
                row.gitlab,
            ]
        )

    filename = f"leaderboard_{provider}_{window}_{datetime.now(UTC):%Y-%m-%d}.csv"
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-store",
        },
    )
