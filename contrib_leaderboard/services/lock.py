from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from contrib_leaderboard.db.models.contribution import ContribProvider

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_LOCK_TTL = 60


class LockInUseError(RuntimeError):
    """Raised when a lock is already held. Callers should skip, not fail."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Lock in use: {key}")
        self.key = key


def _provider_value(provider: ContribProvider | str) -> str:
    return provider.value if isinstance(provider, ContribProvider) else provider


def daily_lock_key(provider: ContribProvider | str, user_id: str, yyyymmdd: str) -> str:
    return f"lock:daily:{_provider_value(provider)}:{user_id}:{yyyymmdd}"


def backfill_lock_key(provider: ContribProvider | str, user_id: str) -> str:
    return f"lock:backfill:{_provider_value(provider)}:{user_id}"


def refresh_lock_key(
    provider: ContribProvider | str,
    user_id: str,
    from_day: str,
    to_day: str,
) -> str:
    return f"lock:refresh:{_provider_value(provider)}:{user_id}:{from_day}:{to_day}"


class DistributedLock:
    """Short-TTL mutual exclusion over Redis ``SET NX EX``.

    There is no waiting or retry: contention fails fast with
    :class:`LockInUseError`.
    """

    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    async def acquire(self, key: str, ttl_seconds: int = DEFAULT_LOCK_TTL) -> bool:
        ok = await self.redis.set(key, "1", nx=True, ex=ttl_seconds)
        return bool(ok)

    async def release(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as e:
            # Expiry will free it anyway.
            logger.warning("Lock release failed", key=key, error=str(e))

    async def with_lock(
        self,
        key: str,
        ttl_seconds: int,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        if not await self.acquire(key, ttl_seconds):
            raise LockInUseError(key)
        try:
            return await fn()
        finally:
            await self.release(key)

    async def with_locks(
        self,
        keys: Sequence[str],
        ttl_seconds: int,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Hold every key in order while ``fn`` runs; release all afterwards."""
        if not keys:
            return await fn()

        head, *rest = keys
        return await self.with_lock(
            head,
            ttl_seconds,
            lambda: self.with_locks(rest, ttl_seconds, fn),
        )
