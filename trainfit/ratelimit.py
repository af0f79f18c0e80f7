"""Fixed-window rate limiting backed by an injected counter store.

The store lives on ``app.state.counter_store`` (set up in the lifespan), so
each app instance, and each test app, gets its own counters. Use the Redis
backend when several instances must share limits.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis
from fastapi import Depends, HTTPException, Request, status

from trainfit.auth.dependencies import get_current_active_user
from trainfit.config import settings
from trainfit.models.user import User

logger = logging.getLogger(__name__)


class CounterStore(Protocol):
    async def incr(self, key: str, window_seconds: int) -> int:
        """Increment ``key`` and return the new count for the current window."""
        ...

    async def close(self) -> None: ...


class InMemoryCounterStore:
    """Per-process counters with a TTL per key."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def incr(self, key: str, window_seconds: int) -> int:
        async with self._lock:
            now = self._clock()
            count, expires_at = self._counters.get(key, (0, 0.0))
            if expires_at <= now:
                count, expires_at = 0, now + window_seconds
            count += 1
            self._counters[key] = (count, expires_at)
            self._evict_expired(now)
            return count

    def _evict_expired(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._counters.items() if expires_at <= now]
        for k in expired:
            del self._counters[k]

    async def close(self) -> None:
        self._counters.clear()


class RedisCounterStore:
    """Counters shared across instances via Redis ``INCR`` + ``EXPIRE``."""

    def __init__(self, client: redis.Redis, prefix: str = "trainfit:ratelimit:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(redis.from_url(url, decode_responses=True))

    async def incr(self, key: str, window_seconds: int) -> int:
        full_key = self._prefix + key
        count = await self._client.incr(full_key)
        if count == 1:
            await self._client.expire(full_key, window_seconds)
        return int(count)

    async def close(self) -> None:
        await self._client.aclose()


def create_counter_store() -> CounterStore:
    if settings.rate_limit_backend == "redis":
        logger.info("Rate limiting backed by Redis")
        return RedisCounterStore.from_url(settings.redis_url)
    return InMemoryCounterStore()


def get_counter_store(request: Request) -> CounterStore:
    store = getattr(request.app.state, "counter_store", None)
    if store is None:
        store = InMemoryCounterStore()
        request.app.state.counter_store = store
    return store


class RateLimit:
    """Dependency limiting one user to ``limit`` calls per ``window_seconds`` for ``scope``."""

    def __init__(self, scope: str, limit: int, window_seconds: int) -> None:
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds

    async def __call__(
        self,
        user: User = Depends(get_current_active_user),
        store: CounterStore = Depends(get_counter_store),
    ) -> None:
        count = await store.incr(f"{self.scope}:{user.id}", self.window_seconds)
        if count > self.limit:
            logger.warning("Rate limit exceeded for %s on %s (%d)", user.id, self.scope, count)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later.",
                headers={"Retry-After": str(self.window_seconds)},
            )


manual_edit_rate_limit = RateLimit(
    "manual-payment-edit",
    settings.manual_edit_rate_limit,
    settings.manual_edit_rate_window_seconds,
)
