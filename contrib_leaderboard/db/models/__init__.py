from contrib_leaderboard.db.models.base import Base
from contrib_leaderboard.db.models.contribution import (
    ContribDaily,
    ContribProvider,
    ContribTotals,
)

__all__ = [
    "Base",
    "ContribProvider",
    "ContribDaily",
    "ContribTotals",
]
