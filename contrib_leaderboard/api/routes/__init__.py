from fastapi import APIRouter

from contrib_leaderboard.api.routes.internal import router as internal_router
from contrib_leaderboard.api.routes.leaderboard import router as leaderboard_router

router = APIRouter()

router.include_router(leaderboard_router, prefix="/leaderboard", tags=["leaderboard"])
router.include_router(internal_router, prefix="/internal/leaderboard", tags=["internal"])
