"""Hybrid cache: Redis when available, in-process memory otherwise."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Final, TypeVar

from redis.exceptions import RedisError

from transit_feeds.cache.serialization import deserialize, serialize
from transit_feeds.exceptions import CacheSerializationError
from transit_feeds.logging import get_logger

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from transit_feeds.config import Settings

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 60
DEFAULT_CLEANUP_THRESHOLD = 100

T = TypeVar("T")

_REDIS_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class _Missing:
    """Sentinel type for a cache miss; a cached ``None`` is a hit."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


class HybridCache:
    """Key/TTL cache backed by Redis with an in-process fallback store.

    Redis failures never reach the caller: the failing operation is logged
    and served from the memory store instead. Expired memory entries are
    dropped on read and swept whenever the store grows past
    ``cleanup_threshold`` entries.

    There is no request coalescing. Concurrent misses on the same key each
    run their producer.
    """

    def __init__(
        self,
        redis_client: Redis | None = None,
        *,
        cleanup_threshold: int = DEFAULT_CLEANUP_THRESHOLD,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis_client
        self._memory: dict[str, tuple[str, float]] = {}
        self._cleanup_threshold = cleanup_threshold
        self._enabled = enabled
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> HybridCache:
        """Build a cache from settings, connecting to Redis when configured."""
        redis_client = None
        if settings.redis_url:
            from redis.asyncio import Redis

            redis_client = Redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=1.0,
                socket_timeout=1.0,
            )
            logger.info("Using Redis cache", redis_url=_redact_url(settings.redis_url))
        else:
            logger.info("Using in-memory cache (Redis not configured)")

        return cls(
            redis_client,
            cleanup_threshold=settings.memory_cache_cleanup_threshold,
            enabled=settings.enable_cache,
        )

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    @property
    def memory_size(self) -> int:
        return len(self._memory)

    async def get(self, key: str) -> Any:
        """Return the cached value for ``key`` or ``MISSING``."""
        if not self._enabled:
            return MISSING

        if self._redis is not None:
            try:
                data = await self._redis.get(key)
            except _REDIS_ERRORS as exc:
                logger.warning("Redis get failed, using memory cache", cache_key=key, error=str(exc))
            else:
                if data is None:
                    return MISSING
                return self._decode(key, data)

        item = self._memory.get(key)
        if item is None:
            return MISSING

        data, expires_at = item
        if self._clock() > expires_at:
            del self._memory[key]
            return MISSING
        return self._decode(key, data)

    async def set(self, key: str, value: Any, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        if not self._enabled:
            return

        data = serialize(value)

        if self._redis is not None:
            try:
                await self._redis.setex(key, ttl_seconds, data)
                return
            except _REDIS_ERRORS as exc:
                logger.warning("Redis set failed, using memory cache", cache_key=key, error=str(exc))

        self._memory[key] = (data, self._clock() + ttl_seconds)

        if len(self._memory) > self._cleanup_threshold:
            self._sweep()

    async def delete(self, key: str) -> None:
        """Remove ``key`` from both stores."""
        self._memory.pop(key, None)
        if self._redis is not None:
            try:
                await self._redis.delete(key)
            except _REDIS_ERRORS as exc:
                logger.warning("Redis delete failed", cache_key=key, error=str(exc))

    def clear(self) -> None:
        """Drop every entry in the memory store."""
        self._memory.clear()

    async def get_cached_or_fetch(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> T:
        """Return the cached value, or run ``producer`` and cache its result.

        Errors from ``producer`` propagate and nothing is cached.
        """
        cached = await self.get(key)
        if cached is not MISSING:
            return cached

        fresh = await producer()
        try:
            await self.set(key, fresh, ttl_seconds)
        except CacheSerializationError as exc:
            logger.error("Value could not be cached", cache_key=key, error=str(exc))
        return fresh

    async def close(self) -> None:
        """Close the Redis connection pool, if any."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except _REDIS_ERRORS as exc:
                logger.warning("Redis close failed", error=str(exc))

    def _decode(self, key: str, data: str | bytes) -> Any:
        try:
            return deserialize(data)
        except CacheSerializationError as exc:
            # Unreadable entries behave like a miss and get overwritten
            logger.error("Discarding unreadable cache entry", cache_key=key, error=str(exc))
            self._memory.pop(key, None)
            return MISSING

    def _sweep(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._memory.items() if now > expires_at]
        for key in expired:
            del self._memory[key]
        if expired:
            logger.debug("Swept expired memory cache entries", removed=len(expired))


def _redact_url(url: str) -> str:
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
