"""Cache key naming and default TTLs.

Keys follow ``<category>:<scope>`` so they can be inspected with redis-cli.
"""

from __future__ import annotations

from collections.abc import Iterable

ALL_SCOPE = "all"

# Default TTLs in seconds
TTL_VEHICLE_POSITIONS = 10
TTL_PREDICTIONS = 15
TTL_SERVICE_ALERTS = 300
TTL_BUS_STOP_PROFILES = 86400

CATEGORY_BUS_STOP_PROFILES = "bus-stop-profiles"
CATEGORY_BUS_STOP_PREDICTIONS = "bus-stop-predictions"


def _joined(codes: Iterable[str]) -> str:
    return ",".join(sorted(codes))


class CacheKeys:
    """Key builders shared by the feed clients and the batch coordinator."""

    @staticmethod
    def gtfs_vehicle_positions(route_id: str = ALL_SCOPE) -> str:
        return f"bus:{route_id}"

    @staticmethod
    def gtfs_trip_updates(route_id: str = ALL_SCOPE) -> str:
        return f"trips:{route_id}"

    @staticmethod
    def gtfs_service_alerts(route_id: str = ALL_SCOPE) -> str:
        return f"alerts:{route_id}"

    @staticmethod
    def act_vehicle_positions(route_id: str | None = None) -> str:
        return f"vehicle-positions:{route_id or ALL_SCOPE}"

    @staticmethod
    def batch(category: str, codes: Iterable[str]) -> str:
        """Key for one identifier chunk; independent of caller ordering."""
        return f"{category}:{_joined(codes)}"
