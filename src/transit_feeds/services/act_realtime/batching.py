"""Splits stop code lookups into ACT RealTime sized batches."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

from transit_feeds.cache.keys import (
    CATEGORY_BUS_STOP_PREDICTIONS,
    CATEGORY_BUS_STOP_PROFILES,
    TTL_BUS_STOP_PROFILES,
    TTL_PREDICTIONS,
    CacheKeys,
)
from transit_feeds.exceptions import TransitFeedError
from transit_feeds.logging import get_logger
from transit_feeds.services.act_realtime.client import MAX_STOP_CODES_PER_REQUEST

if TYPE_CHECKING:
    from transit_feeds.cache.hybrid import HybridCache
    from transit_feeds.config import Settings
    from transit_feeds.models.act_realtime import BusStopPredictionRaw, BusStopProfileRaw
    from transit_feeds.services.act_realtime.client import ActRealtimeClient

logger = get_logger(__name__)


class BatchOperation(str, Enum):
    PROFILES = "profiles"
    PREDICTIONS = "predictions"


def chunked(items: Sequence[str], size: int) -> list[list[str]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchCoordinator:
    """Runs stop code lookups of any length as concurrent, cached batches.

    Each chunk is cached under its own key built from its sorted codes. A
    failing chunk is logged and its codes are left out of the merged result;
    sibling chunks are unaffected. When every chunk fails the first failure is
    raised, so an unavailable upstream never reads as an empty result.
    """

    def __init__(
        self,
        client: ActRealtimeClient,
        cache: HybridCache,
        *,
        chunk_size: int = MAX_STOP_CODES_PER_REQUEST,
        ttl_profiles: int = TTL_BUS_STOP_PROFILES,
        ttl_predictions: int = TTL_PREDICTIONS,
    ) -> None:
        if not 1 <= chunk_size <= MAX_STOP_CODES_PER_REQUEST:
            raise ValueError(f"chunk_size must be between 1 and {MAX_STOP_CODES_PER_REQUEST}")
        self._client = client
        self._cache = cache
        self.chunk_size = chunk_size
        self._operations: dict[BatchOperation, tuple[str, Callable[..., Awaitable[Any]], int]] = {
            BatchOperation.PROFILES: (
                CATEGORY_BUS_STOP_PROFILES,
                client.fetch_bus_stop_profiles_raw,
                ttl_profiles,
            ),
            BatchOperation.PREDICTIONS: (
                CATEGORY_BUS_STOP_PREDICTIONS,
                client.fetch_bus_stop_predictions_raw,
                ttl_predictions,
            ),
        }

    @classmethod
    def from_settings(
        cls, settings: Settings, client: ActRealtimeClient, cache: HybridCache
    ) -> BatchCoordinator:
        return cls(
            client,
            cache,
            ttl_profiles=settings.cache_ttl_bus_stop_profiles,
            ttl_predictions=settings.cache_ttl_predictions,
        )

    async def fetch(self, stop_codes: Sequence[str], operation: BatchOperation) -> dict[str, Any]:
        """Look up ``stop_codes`` in batches and merge the per-chunk maps."""
        codes = list(dict.fromkeys(stop_codes))
        if not codes:
            return {}

        category, fetch_chunk, ttl = self._operations[operation]
        chunks = chunked(codes, self.chunk_size)

        async def run_chunk(chunk: list[str]) -> dict[str, Any]:
            key = CacheKeys.batch(category, chunk)
            return await self._cache.get_cached_or_fetch(key, lambda: fetch_chunk(chunk), ttl)

        results = await asyncio.gather(
            *(run_chunk(chunk) for chunk in chunks), return_exceptions=True
        )

        merged: dict[str, Any] = {}
        failures: list[Exception] = []
        for chunk, chunk_result in zip(chunks, results):
            if isinstance(chunk_result, TransitFeedError):
                logger.error(
                    "Batch chunk failed",
                    operation=operation.value,
                    stop_codes=",".join(chunk),
                    error=str(chunk_result),
                )
                failures.append(chunk_result)
            elif isinstance(chunk_result, Exception):
                logger.error(
                    "Unexpected batch chunk error",
                    operation=operation.value,
                    stop_codes=",".join(chunk),
                    exc_info=chunk_result,
                )
                failures.append(chunk_result)
            elif isinstance(chunk_result, BaseException):
                # Cancellation of the caller
                raise chunk_result
            else:
                merged.update(chunk_result)

        if failures and len(failures) == len(chunks):
            raise failures[0]

        missing = [code for code in codes if code not in merged]
        if missing:
            logger.warning(
                "Stop codes missing from batch result",
                operation=operation.value,
                stop_codes=",".join(missing),
            )

        return merged

    async def fetch_bus_stop_profiles(
        self, stop_codes: Sequence[str]
    ) -> dict[str, BusStopProfileRaw]:
        return await self.fetch(stop_codes, BatchOperation.PROFILES)

    async def fetch_bus_stop_predictions(
        self, stop_codes: Sequence[str]
    ) -> dict[str, list[BusStopPredictionRaw]]:
        return await self.fetch(stop_codes, BatchOperation.PREDICTIONS)
