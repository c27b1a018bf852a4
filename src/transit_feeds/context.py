"""Per-process service wiring.

Everything that holds a connection is built here once, at startup, and handed
down explicitly. Nothing below this module creates its own clients.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from transit_feeds.cache.hybrid import HybridCache
from transit_feeds.config import Settings, get_settings
from transit_feeds.logging import get_logger
from transit_feeds.services.act_realtime.batching import BatchCoordinator
from transit_feeds.services.act_realtime.client import ActRealtimeClient
from transit_feeds.services.gtfs_rt.client import GtfsRealtimeClient
from transit_feeds.utils.datetime import TimestampResolver

logger = get_logger(__name__)


@dataclass
class ServiceContext:
    settings: Settings
    cache: HybridCache
    http_client: httpx.AsyncClient
    gtfs: GtfsRealtimeClient
    act: ActRealtimeClient
    batch: BatchCoordinator
    resolver: TimestampResolver
    owns_http_client: bool = True

    async def aclose(self) -> None:
        """Release the Redis connection and, if we created it, the HTTP client."""
        await self.cache.close()
        if self.owns_http_client:
            await self.http_client.aclose()
        logger.info("Service context closed")


def create_context(
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
    cache: HybridCache | None = None,
) -> ServiceContext:
    """Build the clients, cache and resolver from settings.

    Args:
        settings: Defaults to ``get_settings()``.
        http_client: Shared client for both upstreams. When omitted one is
            created and closed with the context.
        cache: Defaults to a cache built from settings.
    """
    settings = settings or get_settings()
    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_sec),
            follow_redirects=True,
        )

    cache = cache or HybridCache.from_settings(settings)
    act = ActRealtimeClient.from_settings(settings, cache, http_client)

    context = ServiceContext(
        settings=settings,
        cache=cache,
        http_client=http_client,
        gtfs=GtfsRealtimeClient.from_settings(settings, cache, http_client),
        act=act,
        batch=BatchCoordinator.from_settings(settings, act, cache),
        resolver=TimestampResolver(settings.transit_timezone),
        owns_http_client=owns_http_client,
    )

    logger.info(
        "Service context created",
        cache_backend=cache.backend,
        cache_enabled=settings.enable_cache,
        timezone=settings.transit_timezone,
    )
    return context
