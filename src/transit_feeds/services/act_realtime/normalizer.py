"""ACT RealTime normalizer: raw JSON payloads to domain models."""

from __future__ import annotations

import math
from typing import Any, Optional

from transit_feeds.exceptions import NormalizationError
from transit_feeds.logging import get_logger
from transit_feeds.models.act_realtime import (
    BusPositionRaw,
    BusStopPredictionRaw,
    BusStopProfileRaw,
)
from transit_feeds.models.transit import BusPosition, BusStopPrediction, BusStopProfile
from transit_feeds.utils.datetime import TimestampResolver

logger = get_logger(__name__)

MPH_TO_METERS_PER_SECOND = 0.44704
DUE = "Due"
UNKNOWN_VEHICLE = "unknown"


def is_outbound_act(rtdir: Optional[str]) -> bool:
    """AC Transit names outbound runs "To Amtrak" or "Away"; anything else is inbound."""
    if not rtdir:
        return False
    normalized = rtdir.lower()
    return "amtrak" in normalized or "away" in normalized


def parse_finite(value: Any) -> Optional[float]:
    """Parse a number or numeric string; blanks, junk and non-finite values give None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_minutes_away(value: Optional[str]) -> int:
    """Countdown in minutes. "Due" means 0; unparseable means 0; never negative."""
    if value is None:
        return 0
    value = value.strip()
    if value == DUE:
        return 0
    try:
        minutes = int(value)
    except ValueError:
        return 0
    return max(0, minutes)


def resolve_trip_id(raw: BusPositionRaw) -> Optional[str]:
    trip_id = raw.tatripid.strip() if raw.tatripid else ""
    if trip_id:
        return trip_id
    if raw.tripid is not None and str(raw.tripid).strip():
        return str(raw.tripid).strip()
    return None


class ActRealtimeNormalizer:
    """Normalizes ACT RealTime records into domain models.

    Timestamps are resolved in the operator's zone; pass the resolver built
    from settings so the zone is configurable.
    """

    @staticmethod
    def bus_positions(
        raw_positions: list[BusPositionRaw],
        resolver: Optional[TimestampResolver] = None,
    ) -> list[BusPosition]:
        """Normalize raw vehicles, dropping those without id, route or coordinates.

        Speed is reported in mph and converted to meters per second.

        Returns:
            Positions sorted by vehicle id.
        """
        resolver = resolver or TimestampResolver()
        positions: list[BusPosition] = []
        dropped = 0

        for raw in raw_positions:
            vehicle_id = raw.vid.strip() if raw.vid else ""
            route_id = raw.rt.strip() if raw.rt else ""
            lat = parse_finite(raw.lat)
            lon = parse_finite(raw.lon)

            if not vehicle_id or not route_id or lat is None or lon is None:
                dropped += 1
                continue

            speed_mph = parse_finite(raw.spd)
            positions.append(
                BusPosition(
                    vehicle_id=vehicle_id,
                    route_id=route_id,
                    latitude=lat,
                    longitude=lon,
                    heading=parse_finite(raw.hdg),
                    speed=speed_mph * MPH_TO_METERS_PER_SECOND if speed_mph is not None else None,
                    timestamp=resolver.resolve(raw.tmstmp),
                    trip_id=resolve_trip_id(raw),
                    stop_sequence=None,
                )
            )

        if dropped:
            logger.debug("Dropped incomplete ACT RealTime vehicles", dropped=dropped)

        return sorted(positions, key=lambda p: p.vehicle_id)

    @staticmethod
    def bus_stop_profile(raw: BusStopProfileRaw) -> BusStopProfile:
        """Build a profile from a raw stop.

        Raises:
            NormalizationError: ``geoid`` or ``stpid`` is missing.
        """
        if not raw.geoid:
            raise NormalizationError("Cannot create BusStopProfile without geoid")
        if not raw.stpid:
            raise NormalizationError("Cannot create BusStopProfile without stpid")

        return BusStopProfile(
            id=raw.geoid,
            code=raw.stpid,
            name=raw.stpnm,
            latitude=parse_finite(raw.lat),
            longitude=parse_finite(raw.lon),
        )

    @staticmethod
    def bus_stop_predictions(
        raw_predictions: list[BusStopPredictionRaw],
        is_outbound: bool,
        resolver: Optional[TimestampResolver] = None,
    ) -> list[BusStopPrediction]:
        """Normalize the predictions travelling in one direction.

        Predictions without a usable ``prdtm`` are dropped.

        Returns:
            Predictions sorted by arrival time.
        """
        resolver = resolver or TimestampResolver()
        predictions: list[BusStopPrediction] = []
        dropped = 0

        for raw in raw_predictions:
            prediction_is_outbound = is_outbound_act(raw.rtdir)
            if prediction_is_outbound != is_outbound:
                continue

            arrival = resolver.try_resolve(raw.prdtm)
            if arrival is None:
                dropped += 1
                continue

            predictions.append(
                BusStopPrediction(
                    vehicle_id=raw.vid or UNKNOWN_VEHICLE,
                    trip_id=raw.tatripid or "",
                    arrival_time=arrival,
                    departure_time=arrival,
                    minutes_away=parse_minutes_away(raw.prdctdn),
                    is_outbound=prediction_is_outbound,
                    distance_to_stop_feet=parse_finite(raw.dstp),
                )
            )

        if dropped:
            logger.warning("Dropped ACT RealTime predictions without prdtm", dropped=dropped)

        return sorted(predictions, key=lambda p: p.arrival_time)
