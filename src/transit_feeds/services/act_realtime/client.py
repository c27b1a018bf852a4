"""ACT RealTime REST client.

ACT RealTime is AC Transit's proprietary JSON API. Profile and prediction
lookups accept at most 10 comma-joined stop codes, passed as ``stpid`` even
though they are stop codes and not GTFS stop_ids.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from transit_feeds.cache.keys import TTL_VEHICLE_POSITIONS, CacheKeys
from transit_feeds.config import with_token
from transit_feeds.exceptions import (
    BatchLimitError,
    MalformedResponseError,
    UpstreamHTTPError,
    UpstreamTransportError,
)
from transit_feeds.logging import get_logger
from transit_feeds.models.act_realtime import (
    BusPositionRaw,
    BusStopPredictionRaw,
    BusStopProfileRaw,
    PredictionsResponse,
    StopsResponse,
    SystemTimeResponse,
    VehiclesResponse,
)

if TYPE_CHECKING:
    from transit_feeds.cache.hybrid import HybridCache
    from transit_feeds.config import Settings

logger = get_logger(__name__)

MAX_STOP_CODES_PER_REQUEST = 10
DEFAULT_TIMEOUT_SEC = 10.0

STOP_PROFILE_PATH = "/stop"
PREDICTIONS_PATH = "/prediction"
VEHICLE_POSITIONS_PATH = "/vehicle"
SYSTEM_TIME_PATH = "/time"

ResponseT = TypeVar("ResponseT", bound=BaseModel)


def check_batch_size(stop_codes: Sequence[str]) -> None:
    """Reject oversized batches before any request is built."""
    if len(stop_codes) > MAX_STOP_CODES_PER_REQUEST:
        raise BatchLimitError(
            f"ACT RealTime accepts at most {MAX_STOP_CODES_PER_REQUEST} stop codes "
            f"per request, got {len(stop_codes)}"
        )


class ActRealtimeClient:
    """Fetches stop profiles, predictions, vehicles and system time."""

    def __init__(
        self,
        base_url: str,
        token: str,
        cache: HybridCache,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        ttl_vehicle_positions: int = TTL_VEHICLE_POSITIONS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._cache = cache
        self._http_client = http_client
        self.timeout_sec = timeout_sec
        self._ttl_vehicle_positions = ttl_vehicle_positions

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: HybridCache,
        http_client: httpx.AsyncClient | None = None,
    ) -> ActRealtimeClient:
        return cls(
            settings.act_realtime_api_base_url,
            settings.ac_transit_token,
            cache,
            http_client=http_client,
            timeout_sec=settings.http_timeout_sec,
            ttl_vehicle_positions=settings.cache_ttl_vehicle_positions,
        )

    def build_url(self, path: str, params: Optional[dict[str, str]] = None) -> str:
        return with_token(f"{self.base_url}{path}", self._token, params)

    async def fetch_bus_stop_profiles_raw(
        self, stop_codes: Sequence[str]
    ) -> dict[str, BusStopProfileRaw]:
        """Fetch profiles for up to 10 stop codes in one request (uncached).

        Returns:
            Map of stop code to profile, for codes present in the response.

        Raises:
            BatchLimitError: More than 10 codes were passed.
        """
        check_batch_size(stop_codes)
        if not stop_codes:
            return {}

        joined = ",".join(stop_codes)
        data = await self._get_json(STOP_PROFILE_PATH, {"stpid": joined}, "stop_profiles")
        if data is None:
            logger.warning("Stop codes not found", stop_codes=joined)
            return {}

        stops = self._validate(StopsResponse, data, "stop_profiles").body.stops
        by_code = {stop.stpid: stop for stop in stops}
        profiles = {code: by_code[code] for code in stop_codes if code in by_code}

        missing = [code for code in stop_codes if code not in profiles]
        if missing:
            logger.warning("Stop codes not found in response", stop_codes=",".join(missing))

        return profiles

    async def fetch_bus_stop_predictions_raw(
        self, stop_codes: Sequence[str]
    ) -> dict[str, list[BusStopPredictionRaw]]:
        """Fetch predictions for up to 10 stop codes in one request (uncached).

        Returns:
            Map of stop code to its predictions. Every requested code is
            present; codes without predictions map to an empty list.

        Raises:
            BatchLimitError: More than 10 codes were passed.
        """
        check_batch_size(stop_codes)
        if not stop_codes:
            return {}

        joined = ",".join(stop_codes)
        data = await self._get_json(PREDICTIONS_PATH, {"stpid": joined}, "predictions")
        if data is None:
            logger.warning("No predictions for stop codes", stop_codes=joined)
            return {code: [] for code in stop_codes}

        predictions = self._validate(PredictionsResponse, data, "predictions").body.prd
        return {code: [p for p in predictions if p.stpid == code] for code in stop_codes}

    async def fetch_vehicle_positions_raw(
        self, route_id: Optional[str] = None
    ) -> list[BusPositionRaw]:
        """Fetch vehicle positions, optionally for one route (uncached)."""
        params = {"rt": route_id} if route_id else None
        data = await self._get_json(VEHICLE_POSITIONS_PATH, params, "vehicle_positions")
        if data is None:
            logger.warning("No vehicle positions found", route_id=route_id)
            return []

        return self._validate(VehiclesResponse, data, "vehicle_positions").body.vehicle

    async def fetch_vehicle_positions(
        self, route_id: Optional[str] = None
    ) -> list[BusPositionRaw]:
        """Vehicle positions cached under ``vehicle-positions:<route|all>``."""
        return await self._cache.get_cached_or_fetch(
            CacheKeys.act_vehicle_positions(route_id),
            lambda: self.fetch_vehicle_positions_raw(route_id),
            self._ttl_vehicle_positions,
        )

    async def fetch_system_time(self) -> datetime:
        """Fetch AC Transit's system clock. Never cached.

        Raises:
            MalformedResponseError: The ``tm`` field is missing or not numeric.
            UpstreamHTTPError: Any non-success status, 404 included.
        """
        data = await self._get_json(
            SYSTEM_TIME_PATH, {"unixTime": "true"}, "system_time", not_found_ok=False
        )
        raw_timestamp = self._validate(SystemTimeResponse, data, "system_time").body.tm

        if not raw_timestamp:
            raise MalformedResponseError("ACT RealTime system time response missing timestamp")

        try:
            timestamp_ms = int(raw_timestamp.strip())
        except ValueError as exc:
            raise MalformedResponseError(
                f"Invalid ACT RealTime system time value: {raw_timestamp!r}"
            ) from exc

        return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)

    async def _get_json(
        self,
        path: str,
        params: Optional[dict[str, str]],
        operation: str,
        *,
        not_found_ok: bool = True,
    ) -> Any:
        """GET a JSON document. Returns None for a 404 when ``not_found_ok``."""
        url = self.build_url(path, params)
        headers = {"Accept": "application/json"}

        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout_sec),
                    follow_redirects=True,
                ) as client:
                    response = await client.get(url, headers=headers)
        except httpx.RequestError as exc:
            msg = f"ACT RealTime {operation} request failed"
            logger.error(msg, operation=operation, error=str(exc))
            raise UpstreamTransportError(msg) from exc

        if response.status_code == 404 and not_found_ok:
            return None

        if not response.is_success:
            msg = f"ACT RealTime {operation} returned HTTP {response.status_code}"
            logger.error(msg, operation=operation, status_code=response.status_code)
            raise UpstreamHTTPError(msg, response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            msg = f"ACT RealTime {operation} returned invalid JSON"
            logger.error(msg, operation=operation)
            raise MalformedResponseError(msg) from exc

    @staticmethod
    def _validate(model: type[ResponseT], data: Any, operation: str) -> ResponseT:
        if data is None:
            data = {}
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            msg = f"ACT RealTime {operation} response failed validation"
            logger.error(msg, operation=operation, error=str(exc))
            raise MalformedResponseError(msg) from exc
