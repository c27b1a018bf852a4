"""Hybrid Redis/memory cache with tagged serialization."""

from transit_feeds.cache.hybrid import MISSING, HybridCache
from transit_feeds.cache.keys import CacheKeys
from transit_feeds.cache.serialization import cacheable, deserialize, serialize

__all__ = [
    "MISSING",
    "CacheKeys",
    "HybridCache",
    "cacheable",
    "deserialize",
    "serialize",
]
