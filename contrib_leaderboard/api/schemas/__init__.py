from contrib_leaderboard.api.schemas.leaderboard import (
    BackfillRequest,
    DetailsRequest,
    DetailsResponse,
    LeaderboardEntry,
    LeaderboardPageResponse,
    ProfileEntry,
    ProfilesResponse,
    RefreshDayRequest,
    RefreshResponse,
    UserIdsRequest,
)

__all__ = [
    "BackfillRequest",
    "DetailsRequest",
    "DetailsResponse",
    "LeaderboardEntry",
    "LeaderboardPageResponse",
    "ProfileEntry",
    "ProfilesResponse",
    "RefreshDayRequest",
    "RefreshResponse",
    "UserIdsRequest",
]
