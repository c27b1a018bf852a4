"""GTFS-RT normalizer: protobuf entities to domain models."""

from __future__ import annotations

import math
import re
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from transit_feeds.logging import get_logger
from transit_feeds.models.transit import (
    AlertSeverity,
    BusPosition,
    BusStopPrediction,
    ServiceAlert,
)

if TYPE_CHECKING:
    from google.transit import gtfs_realtime_pb2  # type: ignore[import-untyped]

logger = get_logger(__name__)

# GTFS-RT Alert.SeverityLevel
SEVERITY_MAP = {
    1: AlertSeverity.INFO,  # UNKNOWN_SEVERITY
    2: AlertSeverity.INFO,
    3: AlertSeverity.WARNING,
    4: AlertSeverity.SEVERE,
}

# AC Transit appends translations after a line holding only "---"
_TRANSLATION_SEPARATOR = re.compile(r"\n?---\s*\n?")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_TRAILING_WHITESPACE = re.compile(r"[ \t\r\f\v]+$", re.MULTILINE)

DEFAULT_ALERT_HEADER = "No title"
UNKNOWN_VEHICLE = "unknown"


def _ts_to_dt(unix_ts: int) -> datetime:
    """Convert unix timestamp to timezone-aware datetime."""
    return datetime.fromtimestamp(unix_ts, tz=timezone.utc)


def _finite(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def is_outbound_gtfs(direction_id: Optional[int]) -> bool:
    """GTFS direction_id 1 is outbound for AC Transit; 0 or unset is inbound."""
    return direction_id == 1


def extract_english_text(text: Optional[str]) -> Optional[str]:
    """Keep the English section of a multilingual alert text.

    Returns None when nothing is left after cleaning.
    """
    if not text:
        return None

    english = _TRANSLATION_SEPARATOR.split(text, maxsplit=1)[0].strip()
    if not english:
        return None

    english = _TRAILING_WHITESPACE.sub("", english)
    english = _EXCESS_NEWLINES.sub("\n\n", english)
    return english.strip() or None


def map_severity(severity_level: Optional[int]) -> AlertSeverity:
    return SEVERITY_MAP.get(severity_level or 0, AlertSeverity.INFO)


def minutes_until(arrival: datetime, now: datetime) -> int:
    """Whole minutes from ``now`` to ``arrival``, rounded half up, never negative."""
    minutes = math.floor((arrival - now).total_seconds() / 60 + 0.5)
    return max(0, minutes)


def _get_translation(translated_string: Any) -> str:
    """Pick the English translation, else the first one, else empty string."""
    if not translated_string or not translated_string.translation:
        return ""
    for translation in translated_string.translation:
        if translation.language.lower().startswith("en"):
            return str(translation.text)
    return str(translated_string.translation[0].text)


class GtfsRtNormalizer:
    """Normalizes decoded GTFS-RT entities into domain models."""

    @staticmethod
    def bus_positions(feed: gtfs_realtime_pb2.FeedMessage) -> list[BusPosition]:
        """Normalize VehiclePosition entities.

        Entities without a vehicle id, a route id or usable coordinates are
        dropped.

        Returns:
            Positions sorted by vehicle id.
        """
        header_ts = feed.header.timestamp if feed.header.timestamp else 0
        positions: list[BusPosition] = []
        dropped = 0

        for entity in feed.entity:
            if not entity.HasField("vehicle"):
                continue

            vp = entity.vehicle
            vehicle_id = vp.vehicle.id if vp.HasField("vehicle") and vp.vehicle.id else entity.id
            route_id = vp.trip.route_id if vp.HasField("trip") else ""

            if not vehicle_id or not route_id or not vp.HasField("position"):
                dropped += 1
                continue

            lat = _finite(vp.position.latitude)
            lon = _finite(vp.position.longitude)
            if lat is None or lon is None or (lat == 0.0 and lon == 0.0):
                dropped += 1
                continue

            bearing = vp.position.bearing if vp.position.HasField("bearing") else None
            speed = vp.position.speed if vp.position.HasField("speed") else None
            ts = vp.timestamp if vp.timestamp else header_ts
            stop_seq = vp.current_stop_sequence if vp.HasField("current_stop_sequence") else None

            positions.append(
                BusPosition(
                    vehicle_id=vehicle_id,
                    route_id=route_id,
                    latitude=lat,
                    longitude=lon,
                    heading=_finite(bearing) if bearing is not None else None,
                    speed=_finite(speed) if speed is not None else None,
                    timestamp=_ts_to_dt(ts) if ts else datetime.now(timezone.utc),
                    trip_id=vp.trip.trip_id or None,
                    stop_sequence=stop_seq,
                )
            )

        if dropped:
            logger.debug("Dropped incomplete vehicle positions", dropped=dropped)

        return sorted(positions, key=lambda p: p.vehicle_id)

    @staticmethod
    def bus_stop_predictions(
        feed: gtfs_realtime_pb2.FeedMessage,
        is_outbound: bool,
        now: Optional[datetime] = None,
    ) -> list[BusStopPrediction]:
        """Normalize TripUpdate stop time updates travelling in one direction.

        Each StopTimeUpdate with a stop id and at least one of arrival or
        departure time becomes a prediction. The feed is expected to be
        filtered to one stop already.

        Returns:
            Predictions sorted by arrival time.
        """
        now = now or datetime.now(timezone.utc)
        predictions: list[BusStopPrediction] = []

        for entity in feed.entity:
            if not entity.HasField("trip_update"):
                continue

            tu = entity.trip_update
            if not tu.trip.route_id or not tu.stop_time_update:
                continue

            direction_id = tu.trip.direction_id if tu.trip.HasField("direction_id") else None
            trip_is_outbound = is_outbound_gtfs(direction_id)
            if trip_is_outbound != is_outbound:
                continue

            vehicle_id = (
                tu.vehicle.id
                if tu.HasField("vehicle") and tu.vehicle.id
                else entity.id or UNKNOWN_VEHICLE
            )

            for stu in tu.stop_time_update:
                if not stu.stop_id:
                    continue

                arrival_ts = stu.arrival.time if stu.HasField("arrival") else 0
                departure_ts = stu.departure.time if stu.HasField("departure") else 0
                if not arrival_ts and not departure_ts:
                    continue

                arrival = _ts_to_dt(arrival_ts or departure_ts)
                departure = _ts_to_dt(departure_ts or arrival_ts)

                predictions.append(
                    BusStopPrediction(
                        vehicle_id=vehicle_id,
                        trip_id=tu.trip.trip_id,
                        arrival_time=arrival,
                        departure_time=departure,
                        minutes_away=minutes_until(arrival, now),
                        is_outbound=trip_is_outbound,
                        distance_to_stop_feet=None,
                    )
                )

        return sorted(predictions, key=lambda p: p.arrival_time)

    @staticmethod
    def service_alerts(feed: gtfs_realtime_pb2.FeedMessage) -> list[ServiceAlert]:
        """Normalize Alert entities, one ServiceAlert per entity."""
        alerts: list[ServiceAlert] = []

        for entity in feed.entity:
            if not entity.HasField("alert"):
                continue

            alert = entity.alert
            header = extract_english_text(_get_translation(alert.header_text))
            description = extract_english_text(_get_translation(alert.description_text))

            start_time = None
            end_time = None
            if alert.active_period:
                period = alert.active_period[0]
                start_time = _ts_to_dt(period.start) if period.start else None
                end_time = _ts_to_dt(period.end) if period.end else None

            routes = [ie.route_id for ie in alert.informed_entity if ie.route_id]
            stops = [ie.stop_id for ie in alert.informed_entity if ie.stop_id]
            severity_level = alert.severity_level if alert.HasField("severity_level") else None

            alerts.append(
                ServiceAlert(
                    id=entity.id or f"alert-{uuid.uuid4()}",
                    header_text=header or DEFAULT_ALERT_HEADER,
                    description_text=description,
                    severity=map_severity(severity_level),
                    start_time=start_time,
                    end_time=end_time,
                    affected_routes=tuple(dict.fromkeys(routes)),
                    affected_stops=tuple(dict.fromkeys(stops)),
                )
            )

        return alerts
