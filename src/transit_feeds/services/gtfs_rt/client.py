"""GTFS-RT client for the AC Transit protobuf feeds."""

from __future__ import annotations

from typing import TYPE_CHECKING

from google.transit import gtfs_realtime_pb2

from transit_feeds.cache.keys import (
    TTL_PREDICTIONS,
    TTL_SERVICE_ALERTS,
    TTL_VEHICLE_POSITIONS,
    CacheKeys,
)
from transit_feeds.config import with_token
from transit_feeds.logging import get_logger
from transit_feeds.services.gtfs_rt.decoder import GtfsRtDecoder
from transit_feeds.services.gtfs_rt.fetcher import GtfsRtFetcher

if TYPE_CHECKING:
    import httpx

    from transit_feeds.cache.hybrid import HybridCache
    from transit_feeds.config import Settings

logger = get_logger(__name__)

# Feed type constants
FEED_TRIP_UPDATES = "trip_updates"
FEED_VEHICLE_POSITIONS = "vehicle_positions"
FEED_SERVICE_ALERTS = "service_alerts"

_FEED_PATHS = {
    FEED_VEHICLE_POSITIONS: "/vehicles",
    FEED_TRIP_UPDATES: "/tripupdates",
    FEED_SERVICE_ALERTS: "/alerts",
}


class GtfsRealtimeClient:
    """Fetches, caches and filters GTFS-RT feeds.

    Feeds are cached as serialized protobuf bytes under ``bus:all``,
    ``trips:all`` and ``alerts:all``; route and stop filters are applied to
    the cached whole-system feed.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        cache: HybridCache,
        *,
        fetcher: GtfsRtFetcher | None = None,
        decoder: GtfsRtDecoder | None = None,
        ttl_vehicle_positions: int = TTL_VEHICLE_POSITIONS,
        ttl_trip_updates: int = TTL_PREDICTIONS,
        ttl_service_alerts: int = TTL_SERVICE_ALERTS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._cache = cache
        self._fetcher = fetcher or GtfsRtFetcher()
        self._decoder = decoder or GtfsRtDecoder()
        self._ttls = {
            FEED_VEHICLE_POSITIONS: ttl_vehicle_positions,
            FEED_TRIP_UPDATES: ttl_trip_updates,
            FEED_SERVICE_ALERTS: ttl_service_alerts,
        }
        self._cache_keys = {
            FEED_VEHICLE_POSITIONS: CacheKeys.gtfs_vehicle_positions(),
            FEED_TRIP_UPDATES: CacheKeys.gtfs_trip_updates(),
            FEED_SERVICE_ALERTS: CacheKeys.gtfs_service_alerts(),
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: HybridCache,
        http_client: httpx.AsyncClient | None = None,
    ) -> GtfsRealtimeClient:
        return cls(
            settings.gtfs_realtime_api_base_url,
            settings.ac_transit_token,
            cache,
            fetcher=GtfsRtFetcher(http_client, timeout_sec=settings.http_timeout_sec),
            decoder=GtfsRtDecoder(settings.stale_feed_threshold_sec),
            ttl_vehicle_positions=settings.cache_ttl_vehicle_positions,
            ttl_trip_updates=settings.cache_ttl_predictions,
            ttl_service_alerts=settings.cache_ttl_service_alerts,
        )

    def feed_url(self, feed_type: str) -> str:
        """Full URL, token included, for one of the three feeds."""
        return with_token(f"{self.base_url}{_FEED_PATHS[feed_type]}", self._token)

    async def fetch_feed(self, feed_type: str) -> gtfs_realtime_pb2.FeedMessage:
        """Fetch and decode a feed without touching the cache."""
        data = await self._fetcher.fetch(self.feed_url(feed_type), feed_type)
        return self._decoder.decode(data, feed_type)

    async def _cached_feed(self, feed_type: str) -> gtfs_realtime_pb2.FeedMessage:
        async def produce() -> bytes:
            data = await self._fetcher.fetch(self.feed_url(feed_type), feed_type)
            # Decode once here so an undecodable body is never cached
            feed = self._decoder.decode(data, feed_type)
            self._decoder.is_stale(feed, feed_type)
            return data

        data = await self._cache.get_cached_or_fetch(
            self._cache_keys[feed_type], produce, self._ttls[feed_type]
        )
        return self._decoder.decode(data, feed_type)

    async def fetch_vehicle_positions(self) -> gtfs_realtime_pb2.FeedMessage:
        return await self._cached_feed(FEED_VEHICLE_POSITIONS)

    async def fetch_trip_updates(self) -> gtfs_realtime_pb2.FeedMessage:
        return await self._cached_feed(FEED_TRIP_UPDATES)

    async def fetch_service_alerts(self) -> gtfs_realtime_pb2.FeedMessage:
        return await self._cached_feed(FEED_SERVICE_ALERTS)

    async def fetch_vehicle_positions_for_route(
        self, route_id: str
    ) -> gtfs_realtime_pb2.FeedMessage:
        return filter_by_route(await self.fetch_vehicle_positions(), route_id)

    async def fetch_service_alerts_for_route(
        self, route_id: str
    ) -> gtfs_realtime_pb2.FeedMessage:
        return filter_by_route(await self.fetch_service_alerts(), route_id)

    async def fetch_trip_updates_for_route(
        self, route_id: str, stop_id: str | None = None
    ) -> gtfs_realtime_pb2.FeedMessage:
        """Trip updates for a route, optionally narrowed to one GTFS stop_id.

        ``stop_id`` must be a GTFS stop_id, not a public stop code; a code
        simply matches nothing.
        """
        feed = filter_by_route(await self.fetch_trip_updates(), route_id)
        if stop_id:
            feed = filter_by_stop(feed, stop_id)

        logger.debug(
            "Trip updates filtered",
            route_id=route_id,
            stop_id=stop_id,
            entities=len(feed.entity),
        )
        return feed


def filter_by_route(
    feed: gtfs_realtime_pb2.FeedMessage, route_id: str
) -> gtfs_realtime_pb2.FeedMessage:
    """Return a copy of ``feed`` holding only entities that touch ``route_id``.

    An entity matches through its vehicle trip, its trip update, or any
    informed entity of an alert.
    """
    filtered = gtfs_realtime_pb2.FeedMessage()
    filtered.header.CopyFrom(feed.header)

    for entity in feed.entity:
        if _entity_matches_route(entity, route_id):
            filtered.entity.add().CopyFrom(entity)

    return filtered


def filter_by_stop(
    feed: gtfs_realtime_pb2.FeedMessage, stop_id: str
) -> gtfs_realtime_pb2.FeedMessage:
    """Keep only stop time updates for ``stop_id``; drop trip updates left empty."""
    filtered = gtfs_realtime_pb2.FeedMessage()
    filtered.header.CopyFrom(feed.header)

    for entity in feed.entity:
        if not entity.HasField("trip_update"):
            continue
        updates = [stu for stu in entity.trip_update.stop_time_update if stu.stop_id == stop_id]
        if not updates:
            continue

        copy = filtered.entity.add()
        copy.CopyFrom(entity)
        del copy.trip_update.stop_time_update[:]
        copy.trip_update.stop_time_update.extend(updates)

    return filtered


def _entity_matches_route(entity: gtfs_realtime_pb2.FeedEntity, route_id: str) -> bool:
    if entity.HasField("vehicle") and entity.vehicle.trip.route_id == route_id:
        return True
    if entity.HasField("trip_update") and entity.trip_update.trip.route_id == route_id:
        return True
    if entity.HasField("alert"):
        return any(ie.route_id == route_id for ie in entity.alert.informed_entity)
    return False
