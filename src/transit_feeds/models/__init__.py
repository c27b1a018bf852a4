"""Domain entities and raw upstream payload models."""

from transit_feeds.models.act_realtime import (
    BusPositionRaw,
    BusStopPredictionRaw,
    BusStopProfileRaw,
)
from transit_feeds.models.transit import (
    AlertSeverity,
    BusDirection,
    BusPosition,
    BusStopPrediction,
    BusStopProfile,
    DataSource,
    ServiceAlert,
)

__all__ = [
    "AlertSeverity",
    "BusDirection",
    "BusPosition",
    "BusPositionRaw",
    "BusStopPrediction",
    "BusStopPredictionRaw",
    "BusStopProfile",
    "BusStopProfileRaw",
    "DataSource",
    "ServiceAlert",
]
