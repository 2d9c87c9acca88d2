import pytest

from contrib_leaderboard.db.models import ContribProvider
from contrib_leaderboard.services import user_meta
from contrib_leaderboard.services.contribution_store import ContributionStore
from contrib_leaderboard.services.events import IdentityEvents, IdentityUpdated
from contrib_leaderboard.services.leaderboard_cache import COMBINED_KEYS, PROVIDER_KEYS, USER_SET
from contrib_leaderboard.services.user_meta import (
    UserMetaInput,
    UserMetaStore,
    github_avatar_url,
    gitlab_avatar_url,
    meta_key,
)


class TestSetUserMeta:
    """Tests for identity writes and the identity-updated event."""

    @pytest.mark.asyncio
    async def test_writes_identities_and_registers_user(
        self, redis, session_factory, user_id
    ) -> None:
        await UserMetaStore(redis, session_factory=session_factory).set_user_meta(
            user_id, UserMetaInput(github_login=" octocat ", gitlab_username="tanuki")
        )

        assert await redis.hgetall(meta_key(user_id)) == {
            "githubLogin": "octocat",
            "gitlabUsername": "tanuki",
        }
        assert await redis.sismember(USER_SET, user_id)

    @pytest.mark.asyncio
    async def test_publishes_identity_event(self, redis, user_id) -> None:
        events = IdentityEvents()
        received: list[IdentityUpdated] = []

        async def handler(event: IdentityUpdated) -> None:
            received.append(event)

        events.subscribe(handler)
        store = UserMetaStore(redis, events)

        await store.set_user_meta(user_id, UserMetaInput(github_login="octocat"))
        await store.set_user_meta(
            user_id, UserMetaInput(github_login="octocat"), seed_leaderboards=False
        )

        assert received == [IdentityUpdated(user_id=user_id)]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_fail_write(self, redis, user_id) -> None:
        events = IdentityEvents()

        async def handler(event: IdentityUpdated) -> None:
            raise RuntimeError("resync failed")

        events.subscribe(handler)

        await UserMetaStore(redis, events).set_user_meta(
            user_id, UserMetaInput(gitlab_username="tanuki")
        )

        assert await redis.hget(meta_key(user_id), "gitlabUsername") == "tanuki"


class TestDefaultLeaderboardSeed:
    """Tests for the resync a plain store triggers on identity writes."""

    @pytest.mark.asyncio
    async def test_default_store_syncs_stored_totals(
        self, redis, session_factory, user_id, monkeypatch
    ) -> None:
        store = ContributionStore(session_factory)
        await store.upsert_daily(
            user_id, ContribProvider.GITHUB, "2025-01-05", commits=7, prs=0, issues=0
        )
        await store.recompute_provider_totals(user_id, ContribProvider.GITHUB, now="2025-01-05")
        monkeypatch.setattr(user_meta, "get_session_factory", lambda: session_factory)

        await UserMetaStore(redis).set_user_meta(user_id, UserMetaInput(github_login="octocat"))

        assert await redis.zscore(COMBINED_KEYS["all"], user_id) == 7
        assert await redis.zscore(PROVIDER_KEYS["github"]["all"], user_id) == 7

    @pytest.mark.asyncio
    async def test_user_without_totals_is_ranked_at_zero(
        self, redis, session_factory, user_id
    ) -> None:
        await UserMetaStore(redis, session_factory=session_factory).set_user_meta(
            user_id, UserMetaInput(gitlab_username="tanuki")
        )

        assert await redis.zscore(COMBINED_KEYS["30d"], user_id) == 0
        assert await redis.zscore(PROVIDER_KEYS["gitlab"]["30d"], user_id) is None

    @pytest.mark.asyncio
    async def test_seed_can_be_skipped(self, redis, session_factory, user_id) -> None:
        await UserMetaStore(redis, session_factory=session_factory).set_user_meta(
            user_id, UserMetaInput(github_login="octocat"), seed_leaderboards=False
        )

        assert await redis.zscore(COMBINED_KEYS["all"], user_id) is None
        assert await redis.sismember(USER_SET, user_id)


class TestProviderDerivedMeta:
    """Tests for username/avatar derivation."""

    @pytest.mark.asyncio
    async def test_github_wins_over_gitlab(self, redis, user_id) -> None:
        await UserMetaStore(redis).set_user_meta_from_providers(user_id, "octocat", "tanuki")

        stored = await redis.hgetall(meta_key(user_id))
        assert stored["username"] == "octocat"
        assert stored["avatarUrl"] == "https://github.com/octocat.png?size=80"
        assert stored["gitlabUsername"] == "tanuki"

    @pytest.mark.asyncio
    async def test_gitlab_only(self, redis, user_id) -> None:
        await UserMetaStore(redis).set_user_meta_from_providers(user_id, None, "tanuki")

        stored = await redis.hgetall(meta_key(user_id))
        assert stored["username"] == "tanuki"
        assert stored["avatarUrl"] == gitlab_avatar_url("tanuki")

    @pytest.mark.asyncio
    async def test_nothing_to_write(self, redis, user_id) -> None:
        await UserMetaStore(redis).set_user_meta_from_providers(user_id, " ", None)

        assert await redis.exists(meta_key(user_id)) == 0


class TestGetUserMetas:
    """Tests for bulk profile reads."""

    @pytest.mark.asyncio
    async def test_fallbacks_and_order(self, redis) -> None:
        await redis.hset(meta_key("user-aaaaaaaa-1"), mapping={"githubLogin": "octocat"})
        await redis.hset(
            meta_key("user-bbbbbbbb-2"),
            mapping={"username": "Bee", "avatarUrl": "https://img.test/b.png"},
        )
        store = UserMetaStore(redis)

        metas = await store.get_user_metas(["user-bbbbbbbb-2", "user-aaaaaaaa-1", "missing-user"])

        assert [m.user_id for m in metas] == ["user-bbbbbbbb-2", "user-aaaaaaaa-1", "missing-user"]
        assert (metas[0].username, metas[0].avatar_url) == ("Bee", "https://img.test/b.png")
        assert metas[1].username == "octocat"
        assert metas[1].avatar_url == github_avatar_url("octocat")
        assert metas[2].username == "missing-"
        assert metas[2].avatar_url is None

    @pytest.mark.asyncio
    async def test_empty_input(self, redis) -> None:
        assert await UserMetaStore(redis).get_user_metas([]) == []

    @pytest.mark.asyncio
    async def test_set_display_overrides(self, redis, user_id) -> None:
        store = UserMetaStore(redis)
        await store.set_user_meta_from_providers(user_id, "octocat")

        await store.set_display(user_id, username="The Octocat", avatar_url=None)

        (meta,) = await store.get_user_metas([user_id])
        assert meta.username == "The Octocat"
        assert meta.avatar_url == github_avatar_url("octocat")
