import uuid

import pytest

from contrib_leaderboard.db.models import ContribProvider
from contrib_leaderboard.services.contribution_store import ContributionStore
from contrib_leaderboard.services.events import IdentityEvents, IdentityUpdated
from contrib_leaderboard.services.leaderboard_cache import (
    COMBINED_KEYS,
    PROVIDER_KEYS,
    USER_SET,
    LeaderboardCache,
    LeaderRow,
    key_for,
    parse_zrange,
)

NOW = "2025-01-05"


async def _seed(session_factory, user_id: str, provider: ContribProvider, day: str, commits: int):
    store = ContributionStore(session_factory)
    await store.upsert_daily(user_id, provider, day, commits=commits, prs=0, issues=0)
    await store.recompute_provider_totals(user_id, provider, now=NOW)


class TestParseZrange:
    """Tests for ZRANGE reply normalisation."""

    def test_tuple_pairs(self) -> None:
        assert parse_zrange([("a", 3.0), ("b", 1.0)]) == [LeaderRow("a", 3), LeaderRow("b", 1)]

    def test_dict_items(self) -> None:
        assert parse_zrange([{"member": "a", "score": "2"}]) == [LeaderRow("a", 2)]

    def test_flat_list_with_bytes(self) -> None:
        assert parse_zrange([b"a", b"5", "b", "0"]) == [LeaderRow("a", 5), LeaderRow("b", 0)]

    def test_empty_and_blank_members(self) -> None:
        assert parse_zrange([]) == []
        assert parse_zrange(None) == []
        assert parse_zrange([("", 1)]) == []


class TestKeys:
    def test_key_for(self) -> None:
        assert key_for("combined", "all") == "lb:total:all"
        assert key_for("github", "30d") == "lb:github:30d"
        assert key_for("gitlab", "365d") == "lb:gitlab:365d"


class TestSyncUserLeaderboards:
    """Tests for pushing totals into the sorted sets."""

    @pytest.mark.asyncio
    async def test_combined_is_sum_of_providers(self, session_factory, redis, user_id) -> None:
        await _seed(session_factory, user_id, ContribProvider.GITHUB, "2025-01-05", 3)
        await _seed(session_factory, user_id, ContribProvider.GITLAB, "2025-01-04", 4)

        async with session_factory() as session:
            await LeaderboardCache(redis).sync_user_leaderboards(session, user_id)

        assert await redis.zscore(PROVIDER_KEYS["github"]["30d"], user_id) == 3
        assert await redis.zscore(PROVIDER_KEYS["gitlab"]["30d"], user_id) == 4
        for key in COMBINED_KEYS.values():
            assert await redis.zscore(key, user_id) == 7
        assert await redis.sismember(USER_SET, user_id)

    @pytest.mark.asyncio
    async def test_user_without_activity_is_ranked_at_zero(
        self, session_factory, redis, user_id
    ) -> None:
        async with session_factory() as session:
            await LeaderboardCache(redis).sync_user_leaderboards(session, user_id)

        for key in COMBINED_KEYS.values():
            assert await redis.zscore(key, user_id) == 0
        assert await redis.zscore(PROVIDER_KEYS["github"]["all"], user_id) is None

    @pytest.mark.asyncio
    async def test_resync_overwrites_scores(self, session_factory, redis, user_id) -> None:
        cache = LeaderboardCache(redis)
        await _seed(session_factory, user_id, ContribProvider.GITHUB, "2025-01-05", 9)
        async with session_factory() as session:
            await cache.sync_user_leaderboards(session, user_id)

        await _seed(session_factory, user_id, ContribProvider.GITHUB, "2025-01-05", 2)
        async with session_factory() as session:
            await cache.sync_user_leaderboards(session, user_id)

        assert await redis.zscore(COMBINED_KEYS["all"], user_id) == 2


class TestLeaderboardCacheReads:
    """Tests for removal, top-N and the known-users set."""

    @pytest.mark.asyncio
    async def test_remove_user(self, session_factory, redis, user_id) -> None:
        cache = LeaderboardCache(redis)
        await _seed(session_factory, user_id, ContribProvider.GITHUB, "2025-01-05", 1)
        async with session_factory() as session:
            await cache.sync_user_leaderboards(session, user_id)

        await cache.remove_user_from_leaderboards(user_id)

        for key in [*COMBINED_KEYS.values(), *PROVIDER_KEYS["github"].values()]:
            assert await redis.zscore(key, user_id) is None

    @pytest.mark.asyncio
    async def test_top_combined_orders_by_score(self, redis) -> None:
        await redis.zadd(COMBINED_KEYS["30d"], {"a": 1, "b": 5, "c": 3})

        top = await LeaderboardCache(redis).top_combined(2, "30d")

        assert top == [LeaderRow("b", 5), LeaderRow("c", 3)]

    @pytest.mark.asyncio
    async def test_seed_known_users(self, session_factory, redis) -> None:
        first, second = str(uuid.uuid4()), str(uuid.uuid4())
        await _seed(session_factory, first, ContribProvider.GITHUB, "2025-01-05", 1)
        await _seed(session_factory, first, ContribProvider.GITLAB, "2025-01-05", 1)
        await _seed(session_factory, second, ContribProvider.GITLAB, "2025-01-05", 1)
        cache = LeaderboardCache(redis)

        async with session_factory() as session:
            seeded = await cache.seed_known_users(session)

        assert seeded == 2
        assert await cache.all_known_user_ids() == sorted([first, second])

    @pytest.mark.asyncio
    async def test_subscribed_cache_resyncs_on_identity_event(
        self, session_factory, redis, user_id
    ) -> None:
        await _seed(session_factory, user_id, ContribProvider.GITLAB, "2025-01-05", 6)
        events = IdentityEvents()
        LeaderboardCache(redis).subscribe(events, session_factory)

        await events.publish(IdentityUpdated(user_id=user_id))

        assert await redis.zscore(COMBINED_KEYS["30d"], user_id) == 6
