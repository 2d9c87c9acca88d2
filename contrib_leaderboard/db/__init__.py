from contrib_leaderboard.db.database import (
    async_session_maker,
    get_db,
    get_session_factory,
    init_db,
)

__all__ = ["async_session_maker", "get_db", "get_session_factory", "init_db"]
