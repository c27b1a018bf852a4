"""Query and subscription operations over both upstream sources."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from transit_feeds.exceptions import NormalizationError, StopNotFoundError
from transit_feeds.logging import get_logger
from transit_feeds.models.transit import (
    BusDirection,
    BusPosition,
    BusStopPrediction,
    BusStopProfile,
    DataSource,
    ServiceAlert,
)
from transit_feeds.services.act_realtime.normalizer import ActRealtimeNormalizer
from transit_feeds.services.gtfs_rt.normalizer import GtfsRtNormalizer
from transit_feeds.services.streams import PollingStream

if TYPE_CHECKING:
    from transit_feeds.context import ServiceContext

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TransitService:
    """Entry point for the presentation layer.

    Picks the upstream for each query, resolves stop codes where the GTFS
    side needs stop_ids, and normalizes the result.
    """

    def __init__(self, context: ServiceContext) -> None:
        self._context = context

    async def fetch_bus_positions(
        self,
        route_id: Optional[str] = None,
        source: DataSource = DataSource.GTFS_REALTIME,
    ) -> list[BusPosition]:
        if source is DataSource.GTFS_REALTIME:
            gtfs = self._context.gtfs
            feed = (
                await gtfs.fetch_vehicle_positions_for_route(route_id)
                if route_id
                else await gtfs.fetch_vehicle_positions()
            )
            return GtfsRtNormalizer.bus_positions(feed)

        raw = await self._context.act.fetch_vehicle_positions(route_id)
        return ActRealtimeNormalizer.bus_positions(raw, self._context.resolver)

    async def fetch_bus_stop_profiles(self, stop_codes: Sequence[str]) -> dict[str, BusStopProfile]:
        """Profiles keyed by stop code. Unknown or unusable codes are left out."""
        raw_profiles = await self._context.batch.fetch_bus_stop_profiles(stop_codes)

        profiles: dict[str, BusStopProfile] = {}
        for code, raw in raw_profiles.items():
            try:
                profiles[code] = ActRealtimeNormalizer.bus_stop_profile(raw)
            except NormalizationError as exc:
                logger.warning("Skipping unusable stop profile", stop_code=code, error=str(exc))
        return profiles

    async def fetch_bus_stop_profile(self, stop_code: str) -> BusStopProfile:
        """Raises:
        StopNotFoundError: No usable profile exists for ``stop_code``.
        TransientError: The ACT RealTime lookup itself failed.
        """
        profiles = await self.fetch_bus_stop_profiles([stop_code])
        profile = profiles.get(stop_code)
        if profile is None:
            raise StopNotFoundError(stop_code)
        return profile

    async def fetch_bus_stop_predictions(
        self,
        route_id: str,
        stop_code: str,
        direction: BusDirection,
        source: DataSource = DataSource.ACT_REALTIME,
    ) -> list[BusStopPrediction]:
        """Predictions for one route at one stop, travelling in ``direction``.

        GTFS trip updates are keyed by stop_id, so the stop code is first
        resolved through its profile.

        Raises:
            StopNotFoundError: GTFS source and the stop code has no profile.
            TransientError: An upstream lookup failed.
        """
        is_outbound = direction is BusDirection.OUTBOUND

        if source is DataSource.GTFS_REALTIME:
            profile = await self.fetch_bus_stop_profile(stop_code)
            feed = await self._context.gtfs.fetch_trip_updates_for_route(route_id, profile.id)
            return GtfsRtNormalizer.bus_stop_predictions(feed, is_outbound)

        raw_by_code = await self._context.batch.fetch_bus_stop_predictions([stop_code])
        raw = [p for p in raw_by_code.get(stop_code, []) if not p.rt or p.rt == route_id]
        return ActRealtimeNormalizer.bus_stop_predictions(raw, is_outbound, self._context.resolver)

    async def fetch_service_alerts(self, route_id: Optional[str] = None) -> list[ServiceAlert]:
        gtfs = self._context.gtfs
        feed = (
            await gtfs.fetch_service_alerts_for_route(route_id)
            if route_id
            else await gtfs.fetch_service_alerts()
        )
        return GtfsRtNormalizer.service_alerts(feed)

    async def fetch_system_time(self) -> datetime:
        return await self._context.act.fetch_system_time()

    def stream_bus_positions(
        self,
        route_id: Optional[str] = None,
        source: DataSource = DataSource.GTFS_REALTIME,
    ) -> PollingStream[list[BusPosition]]:
        return PollingStream(
            lambda: self.fetch_bus_positions(route_id, source),
            self._context.settings.polling_interval_sec,
            name="bus_positions",
        )

    def stream_bus_stop_predictions(
        self,
        route_id: str,
        stop_code: str,
        direction: BusDirection,
        source: DataSource = DataSource.ACT_REALTIME,
    ) -> PollingStream[list[BusStopPrediction]]:
        return PollingStream(
            lambda: self.fetch_bus_stop_predictions(route_id, stop_code, direction, source),
            self._context.settings.polling_interval_sec,
            name="bus_stop_predictions",
        )

    def stream_service_alerts(
        self, route_id: Optional[str] = None
    ) -> PollingStream[list[ServiceAlert]]:
        return PollingStream(
            lambda: self.fetch_service_alerts(route_id),
            self._context.settings.alerts_polling_interval_sec,
            name="service_alerts",
        )

    def stream_system_time(self) -> PollingStream[datetime]:
        # A failed poll reports local time instead of an empty value
        return PollingStream(
            self.fetch_system_time,
            self._context.settings.polling_interval_sec,
            name="system_time",
            empty=_now,
        )
