"""Canonical domain entities shared by both upstream sources."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from transit_feeds.cache.serialization import cacheable

FiniteFloat = Annotated[float, Field(allow_inf_nan=False)]


class AlertSeverity(str, Enum):
    """Three-level alert severity."""

    INFO = "INFO"
    WARNING = "WARNING"
    SEVERE = "SEVERE"


class BusDirection(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class DataSource(str, Enum):
    """Which upstream a query is answered from."""

    GTFS_REALTIME = "GTFS_REALTIME"
    ACT_REALTIME = "ACT_REALTIME"


class _Entity(BaseModel):
    model_config = ConfigDict(frozen=True)


@cacheable
class BusPosition(_Entity):
    """Live position of a single bus."""

    vehicle_id: str = Field(min_length=1)
    route_id: str = Field(min_length=1)
    latitude: FiniteFloat
    longitude: FiniteFloat
    heading: Optional[FiniteFloat] = None
    speed: Optional[FiniteFloat] = None  # meters/second
    timestamp: datetime
    trip_id: Optional[str] = None
    stop_sequence: Optional[int] = Field(default=None, ge=0)


@cacheable
class BusStopProfile(_Entity):
    """Stop metadata keyed by the public stop code.

    ``id`` is the GTFS stop_id; ``code`` is the 5-digit number printed on the
    sign. Only ``code`` is guaranteed, the rest may be resolved later.
    """

    code: str = Field(min_length=1)
    id: Optional[str] = None
    name: Optional[str] = None
    latitude: Optional[FiniteFloat] = None
    longitude: Optional[FiniteFloat] = None


@cacheable
class BusStopPrediction(_Entity):
    """Predicted arrival of one vehicle at one stop."""

    vehicle_id: str
    trip_id: str
    arrival_time: datetime
    departure_time: datetime
    minutes_away: int = Field(ge=0)
    is_outbound: bool
    distance_to_stop_feet: Optional[float] = None


@cacheable
class ServiceAlert(_Entity):
    """Service alert with English-only text."""

    id: str
    header_text: str
    description_text: Optional[str] = None
    severity: AlertSeverity = AlertSeverity.INFO
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    affected_routes: tuple[str, ...] = ()
    affected_stops: tuple[str, ...] = ()
