"""GTFS-Realtime feed client for AC Transit protobuf data."""

from transit_feeds.services.gtfs_rt.client import GtfsRealtimeClient
from transit_feeds.services.gtfs_rt.decoder import GtfsRtDecoder
from transit_feeds.services.gtfs_rt.fetcher import GtfsRtFetcher
from transit_feeds.services.gtfs_rt.normalizer import GtfsRtNormalizer

__all__ = [
    "GtfsRealtimeClient",
    "GtfsRtDecoder",
    "GtfsRtFetcher",
    "GtfsRtNormalizer",
]
