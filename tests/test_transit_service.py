"""Tests for the TransitService query layer and the service context."""

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from transit_feeds.cache.hybrid import HybridCache
from transit_feeds.config import Settings
from transit_feeds.context import ServiceContext, create_context
from transit_feeds.exceptions import StopNotFoundError, TransientError, UpstreamHTTPError
from transit_feeds.models.act_realtime import (
    BusPositionRaw,
    BusStopPredictionRaw,
    BusStopProfileRaw,
)
from transit_feeds.models.transit import BusDirection, DataSource
from transit_feeds.services.act_realtime.batching import BatchCoordinator
from transit_feeds.services.act_realtime.client import ActRealtimeClient
from transit_feeds.services.gtfs_rt.client import GtfsRealtimeClient
from transit_feeds.services.transit import TransitService
from transit_feeds.utils.datetime import TimestampResolver

from .fixtures.gtfs_rt_fixture import (
    build_alert_feed,
    build_multi_vehicle_feed,
    build_two_direction_trip_update_feed,
    decode,
)


def _act_prediction(vid: str, rt: str, rtdir: str, countdown: str) -> BusStopPredictionRaw:
    return BusStopPredictionRaw(
        stpid="55555",
        vid=vid,
        rt=rt,
        rtdir=rtdir,
        prdctdn=countdown,
        prdtm="20250115 12:05",
    )


@pytest.fixture
def context(settings: Settings, cache: HybridCache) -> ServiceContext:
    gtfs = MagicMock(spec=GtfsRealtimeClient)
    act = MagicMock(spec=ActRealtimeClient)
    batch = MagicMock(spec=BatchCoordinator)
    for mock, names in (
        (
            gtfs,
            (
                "fetch_vehicle_positions",
                "fetch_vehicle_positions_for_route",
                "fetch_trip_updates_for_route",
                "fetch_service_alerts",
                "fetch_service_alerts_for_route",
            ),
        ),
        (act, ("fetch_vehicle_positions", "fetch_system_time")),
        (batch, ("fetch_bus_stop_profiles", "fetch_bus_stop_predictions")),
    ):
        for name in names:
            setattr(mock, name, AsyncMock())

    return ServiceContext(
        settings=settings,
        cache=cache,
        http_client=MagicMock(spec=httpx.AsyncClient),
        gtfs=gtfs,
        act=act,
        batch=batch,
        resolver=TimestampResolver(),
        owns_http_client=False,
    )


@pytest.fixture
def service(context: ServiceContext) -> TransitService:
    return TransitService(context)


class TestBusPositions:
    """Unit tests for fetch_bus_positions."""

    @pytest.mark.asyncio
    async def test_gtfs_route(self, service: TransitService, context: Any) -> None:
        context.gtfs.fetch_vehicle_positions_for_route.return_value = decode(
            build_multi_vehicle_feed()
        )

        positions = await service.fetch_bus_positions("51A", DataSource.GTFS_REALTIME)

        context.gtfs.fetch_vehicle_positions_for_route.assert_awaited_once_with("51A")
        assert [p.vehicle_id for p in positions] == ["1501", "1502"]

    @pytest.mark.asyncio
    async def test_gtfs_all_routes(self, service: TransitService, context: Any) -> None:
        context.gtfs.fetch_vehicle_positions.return_value = decode(build_multi_vehicle_feed())

        await service.fetch_bus_positions()

        context.gtfs.fetch_vehicle_positions.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_act(self, service: TransitService, context: Any) -> None:
        context.act.fetch_vehicle_positions.return_value = [
            BusPositionRaw(vid="1501", rt="51A", lat="37.8", lon="-122.27", tmstmp="20250115 12:00")
        ]

        (position,) = await service.fetch_bus_positions("51A", DataSource.ACT_REALTIME)

        context.act.fetch_vehicle_positions.assert_awaited_once_with("51A")
        assert position.timestamp == datetime(2025, 1, 15, 20, 0, tzinfo=timezone.utc)


class TestBusStopProfiles:
    """Unit tests for the stop profile lookups."""

    @pytest.mark.asyncio
    async def test_profile(self, service: TransitService, context: Any) -> None:
        context.batch.fetch_bus_stop_profiles.return_value = {
            "55555": BusStopProfileRaw(stpid="55555", geoid="1001", stpnm="Broadway")
        }

        profile = await service.fetch_bus_stop_profile("55555")

        assert profile.id == "1001"
        assert profile.code == "55555"

    @pytest.mark.asyncio
    async def test_unknown_code(self, service: TransitService, context: Any) -> None:
        context.batch.fetch_bus_stop_profiles.return_value = {}

        with pytest.raises(StopNotFoundError, match="55555"):
            await service.fetch_bus_stop_profile("55555")

    @pytest.mark.asyncio
    async def test_unusable_profile_skipped(self, service: TransitService, context: Any) -> None:
        context.batch.fetch_bus_stop_profiles.return_value = {
            "55555": BusStopProfileRaw(stpid="55555"),
            "55556": BusStopProfileRaw(stpid="55556", geoid="1002"),
        }

        profiles = await service.fetch_bus_stop_profiles(["55555", "55556"])

        assert list(profiles) == ["55556"]


class TestBusStopPredictions:
    """Unit tests for fetch_bus_stop_predictions."""

    @pytest.mark.asyncio
    async def test_gtfs_resolves_stop_code(self, service: TransitService, context: Any) -> None:
        context.batch.fetch_bus_stop_profiles.return_value = {
            "55555": BusStopProfileRaw(stpid="55555", geoid="1001")
        }
        context.gtfs.fetch_trip_updates_for_route.return_value = decode(
            build_two_direction_trip_update_feed(stop_id="1001")
        )

        predictions = await service.fetch_bus_stop_predictions(
            "51A", "55555", BusDirection.OUTBOUND, DataSource.GTFS_REALTIME
        )

        context.gtfs.fetch_trip_updates_for_route.assert_awaited_once_with("51A", "1001")
        assert predictions
        assert all(p.is_outbound for p in predictions)

    @pytest.mark.asyncio
    async def test_gtfs_unknown_stop(self, service: TransitService, context: Any) -> None:
        context.batch.fetch_bus_stop_profiles.return_value = {}

        with pytest.raises(StopNotFoundError):
            await service.fetch_bus_stop_predictions(
                "51A", "55555", BusDirection.INBOUND, DataSource.GTFS_REALTIME
            )

        context.gtfs.fetch_trip_updates_for_route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_act_filters_route_and_direction(
        self, service: TransitService, context: Any
    ) -> None:
        context.batch.fetch_bus_stop_predictions.return_value = {
            "55555": [
                _act_prediction("1", "51A", "To Amtrak", "3"),
                _act_prediction("2", "72R", "To Amtrak", "4"),
                _act_prediction("3", "51A", "To BART", "5"),
            ]
        }

        predictions = await service.fetch_bus_stop_predictions(
            "51A", "55555", BusDirection.OUTBOUND
        )

        context.batch.fetch_bus_stop_predictions.assert_awaited_once_with(["55555"])
        assert [p.vehicle_id for p in predictions] == ["1"]
        assert predictions[0].minutes_away == 3

    @pytest.mark.asyncio
    async def test_act_missing_code(self, service: TransitService, context: Any) -> None:
        context.batch.fetch_bus_stop_predictions.return_value = {}

        assert (
            await service.fetch_bus_stop_predictions("51A", "55555", BusDirection.INBOUND) == []
        )


class TestAlertsAndTime:
    """Unit tests for alerts and system time."""

    @pytest.mark.asyncio
    async def test_alerts_for_route(self, service: TransitService, context: Any) -> None:
        context.gtfs.fetch_service_alerts_for_route.return_value = decode(build_alert_feed())

        (alert,) = await service.fetch_service_alerts("51A")

        context.gtfs.fetch_service_alerts_for_route.assert_awaited_once_with("51A")
        assert alert.affected_routes == ("51A",)

    @pytest.mark.asyncio
    async def test_all_alerts(self, service: TransitService, context: Any) -> None:
        context.gtfs.fetch_service_alerts.return_value = decode(build_alert_feed())

        assert len(await service.fetch_service_alerts()) == 1

    @pytest.mark.asyncio
    async def test_system_time(self, service: TransitService, context: Any) -> None:
        now = datetime(2025, 1, 15, 20, 0, tzinfo=timezone.utc)
        context.act.fetch_system_time.return_value = now

        assert await service.fetch_system_time() == now


class TestSubscriptions:
    """Stream factories on the service."""

    def test_intervals_from_settings(self, service: TransitService, settings: Settings) -> None:
        assert service.stream_bus_positions().interval_sec == settings.polling_interval_sec
        assert service.stream_service_alerts().interval_sec == settings.alerts_polling_interval_sec

    @pytest.mark.asyncio
    async def test_system_time_stream_falls_back_to_local_time(
        self, service: TransitService, context: Any
    ) -> None:
        first = datetime(2025, 1, 15, 20, 0, tzinfo=timezone.utc)
        context.act.fetch_system_time.side_effect = [first, UpstreamHTTPError("HTTP 502", 502)]
        stream = service.stream_system_time()
        stream.interval_sec = 0

        async with stream:
            assert await anext(stream) == first
            fallback = await anext(stream)

        assert isinstance(fallback, datetime)
        assert fallback.tzinfo is not None
        assert fallback != first

    @pytest.mark.asyncio
    async def test_predictions_stream_stops_on_unknown_stop(
        self, service: TransitService, context: Any
    ) -> None:
        context.batch.fetch_bus_stop_profiles.return_value = {}
        stream = service.stream_bus_stop_predictions(
            "51A", "55555", BusDirection.INBOUND, DataSource.GTFS_REALTIME
        )

        async with stream:
            with pytest.raises(StopNotFoundError):
                await anext(stream)


class TestCreateContext:
    """Unit tests for create_context."""

    @pytest.mark.asyncio
    async def test_wires_memory_cache_and_shared_client(self, settings: Settings) -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))

        context = create_context(settings, http_client=http)

        assert context.cache.backend == "memory"
        assert context.owns_http_client is False
        assert context.resolver.timezone_name == settings.transit_timezone
        assert await context.act.fetch_vehicle_positions_raw() == []

        await context.aclose()
        assert not http.is_closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self, settings: Settings) -> None:
        context = create_context(settings)

        await context.aclose()

        assert context.http_client.is_closed


class TestUpstreamOutage:
    """An unavailable ACT RealTime API is reported as a transient failure."""

    @pytest.fixture
    def outage_settings(self) -> Settings:
        return Settings(
            environment="test",
            ac_transit_token="test-token",
            redis_url=None,
            enable_cache=False,
        )

    @pytest.fixture
    async def outage_service(self, outage_settings: Settings) -> Any:
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        context = create_context(outage_settings, http_client=http)
        yield TransitService(context)
        await context.aclose()
        await http.aclose()

    @pytest.mark.asyncio
    async def test_profile_lookup_raises_transient(self, outage_service: TransitService) -> None:
        with pytest.raises(TransientError) as exc_info:
            await outage_service.fetch_bus_stop_profile("55555")

        assert not isinstance(exc_info.value, StopNotFoundError)
        assert isinstance(exc_info.value, UpstreamHTTPError)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_gtfs_predictions_raise_transient(self, outage_service: TransitService) -> None:
        with pytest.raises(TransientError):
            await outage_service.fetch_bus_stop_predictions(
                "51B", "55555", BusDirection.INBOUND, DataSource.GTFS_REALTIME
            )

    @pytest.mark.asyncio
    async def test_act_prediction_stream_priming_raises(
        self, outage_service: TransitService
    ) -> None:
        stream = outage_service.stream_bus_stop_predictions(
            "51B", "55555", BusDirection.INBOUND
        )

        async with stream:
            with pytest.raises(UpstreamHTTPError):
                await anext(stream)

    @pytest.mark.asyncio
    async def test_steady_state_outage_keeps_stream_alive(
        self, outage_settings: Settings
    ) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                prediction = {
                    "stpid": "55555",
                    "vid": "1501",
                    "rt": "51B",
                    "rtdir": "To Rockridge BART",
                    "prdtm": "20250115 12:05",
                    "prdctdn": "5",
                }
                return httpx.Response(200, json={"bustime-response": {"prd": [prediction]}})
            return httpx.Response(503)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        context = create_context(outage_settings, http_client=http)
        stream = TransitService(context).stream_bus_stop_predictions(
            "51B", "55555", BusDirection.INBOUND
        )
        stream.interval_sec = 0

        async with stream:
            first = await anext(stream)
            second = await anext(stream)
            third = await anext(stream)

        await context.aclose()
        await http.aclose()

        assert [p.vehicle_id for p in first] == ["1501"]
        assert second == []
        assert third == []
