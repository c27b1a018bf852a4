"""ACT RealTime JSON client, batching and normalization."""

from transit_feeds.services.act_realtime.batching import BatchCoordinator, BatchOperation
from transit_feeds.services.act_realtime.client import ActRealtimeClient
from transit_feeds.services.act_realtime.normalizer import ActRealtimeNormalizer

__all__ = [
    "ActRealtimeClient",
    "ActRealtimeNormalizer",
    "BatchCoordinator",
    "BatchOperation",
]
