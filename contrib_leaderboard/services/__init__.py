from contrib_leaderboard.services.aggregator import AggregatorDeps, ContributionAggregator
from contrib_leaderboard.services.contribution_store import ContributionStore
from contrib_leaderboard.services.events import IdentityEvents, IdentityUpdated
from contrib_leaderboard.services.leaderboard_cache import LeaderboardCache
from contrib_leaderboard.services.leaderboard_service import LeaderboardService
from contrib_leaderboard.services.lock import DistributedLock, LockInUseError
from contrib_leaderboard.services.user_meta import UserMetaStore

__all__ = [
    "AggregatorDeps",
    "ContributionAggregator",
    "ContributionStore",
    "DistributedLock",
    "IdentityEvents",
    "IdentityUpdated",
    "LeaderboardCache",
    "LeaderboardService",
    "LockInUseError",
    "UserMetaStore",
]
