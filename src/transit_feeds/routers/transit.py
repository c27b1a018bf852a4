"""Transit endpoints.

Endpoints
---------
GET /bus-positions                          – live vehicle positions
GET /bus-stops                              – stop profiles for many stop codes
GET /bus-stops/{code}                       – one stop profile
GET /bus-stops/{code}/predictions           – arrival predictions at a stop
GET /alerts                                 – active service alerts
GET /system-time                            – AC Transit system clock
GET /stream/...                             – NDJSON subscriptions of the above
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from transit_feeds.exceptions import TransitFeedError
from transit_feeds.logging import get_logger
from transit_feeds.models.transit import (
    BusDirection,
    BusPosition,
    BusStopPrediction,
    BusStopProfile,
    DataSource,
    ServiceAlert,
)
from transit_feeds.services.streams import PollingStream
from transit_feeds.services.transit import TransitService

logger = get_logger(__name__)

router = APIRouter(tags=["transit"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"


def get_transit_service(request: Request) -> TransitService:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Service context is not initialised")
    return TransitService(context)


ServiceDep = Annotated[TransitService, Depends(get_transit_service)]


class SystemTimeResponse(BaseModel):
    system_time: datetime


def _split_codes(codes: str) -> list[str]:
    return [code.strip() for code in codes.split(",") if code.strip()]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/bus-positions", response_model=list[BusPosition])
async def get_bus_positions(
    service: ServiceDep,
    route_id: Annotated[Optional[str], Query(description="Only buses on this route")] = None,
    source: DataSource = DataSource.GTFS_REALTIME,
) -> list[BusPosition]:
    return await service.fetch_bus_positions(route_id, source)


@router.get("/bus-stops", response_model=dict[str, BusStopProfile])
async def get_bus_stops(
    service: ServiceDep,
    codes: Annotated[str, Query(description="Comma-separated 5-digit stop codes")],
) -> dict[str, BusStopProfile]:
    """Profiles keyed by stop code; unknown codes are absent."""
    return await service.fetch_bus_stop_profiles(_split_codes(codes))


@router.get("/bus-stops/{code}", response_model=BusStopProfile)
async def get_bus_stop(code: str, service: ServiceDep) -> BusStopProfile:
    return await service.fetch_bus_stop_profile(code)


@router.get("/bus-stops/{code}/predictions", response_model=list[BusStopPrediction])
async def get_bus_stop_predictions(
    code: str,
    service: ServiceDep,
    route_id: Annotated[str, Query(min_length=1)],
    direction: BusDirection = BusDirection.INBOUND,
    source: DataSource = DataSource.ACT_REALTIME,
) -> list[BusStopPrediction]:
    return await service.fetch_bus_stop_predictions(route_id, code, direction, source)


@router.get("/alerts", response_model=list[ServiceAlert])
async def get_service_alerts(
    service: ServiceDep,
    route_id: Optional[str] = None,
) -> list[ServiceAlert]:
    return await service.fetch_service_alerts(route_id)


@router.get("/system-time", response_model=SystemTimeResponse)
async def get_system_time(service: ServiceDep) -> dict[str, Any]:
    return {"system_time": await service.fetch_system_time()}


# ---------------------------------------------------------------------------
# Subscriptions (newline-delimited JSON)
# ---------------------------------------------------------------------------


def _ndjson_line(value: Any) -> str:
    return json.dumps(jsonable_encoder(value)) + "\n"


async def _stream_response(stream: PollingStream[Any], wrap: Any = None) -> StreamingResponse:
    """Prime ``stream`` and return it as an NDJSON response.

    The first snapshot is awaited before the response starts, so a failing
    initial fetch surfaces through the regular error handlers. A later
    terminal error is written as a final ``{"error": ...}`` line.
    """
    wrap = wrap or (lambda value: value)
    stream.start()
    try:
        first = await anext(stream)
    except BaseException:
        await stream.aclose()
        raise

    async def body() -> Any:
        try:
            yield _ndjson_line(wrap(first))
            async for value in stream:
                yield _ndjson_line(wrap(value))
        except TransitFeedError as exc:
            logger.warning("Subscription ended by error", stream=stream.name, error=str(exc))
            yield _ndjson_line({"error": type(exc).__name__, "message": str(exc)})
        finally:
            await stream.aclose()

    return StreamingResponse(body(), media_type=NDJSON_MEDIA_TYPE)


@router.get("/stream/bus-positions")
async def stream_bus_positions(
    service: ServiceDep,
    route_id: Optional[str] = None,
    source: DataSource = DataSource.GTFS_REALTIME,
) -> StreamingResponse:
    return await _stream_response(service.stream_bus_positions(route_id, source))


@router.get("/stream/bus-stops/{code}/predictions")
async def stream_bus_stop_predictions(
    code: str,
    service: ServiceDep,
    route_id: Annotated[str, Query(min_length=1)],
    direction: BusDirection = BusDirection.INBOUND,
    source: DataSource = DataSource.ACT_REALTIME,
) -> StreamingResponse:
    return await _stream_response(
        service.stream_bus_stop_predictions(route_id, code, direction, source)
    )


@router.get("/stream/alerts")
async def stream_service_alerts(
    service: ServiceDep,
    route_id: Optional[str] = None,
) -> StreamingResponse:
    return await _stream_response(service.stream_service_alerts(route_id))


@router.get("/stream/system-time")
async def stream_system_time(service: ServiceDep) -> StreamingResponse:
    return await _stream_response(
        service.stream_system_time(), wrap=lambda value: {"system_time": value}
    )
