"""ACT RealTime timestamp parsing.

ACT RealTime reports times as ``YYYYMMDD HH:MM`` with no offset. The value is
wall-clock time in the operator's home zone, regardless of where this process
runs.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from transit_feeds.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEZONE = "America/Los_Angeles"

_TIMESTAMP_RE = re.compile(
    r"^(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2}) "
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?$"
)


class TimestampResolver:
    """Resolves provider-local timestamp strings to aware UTC datetimes.

    Malformed input never raises: the current time is returned and
    ``malformed_count`` is incremented so callers can surface the condition.
    """

    def __init__(self, timezone_name: str = DEFAULT_TIMEZONE) -> None:
        self.timezone_name = timezone_name
        self._zone: tzinfo = ZoneInfo(timezone_name)
        self.malformed_count = 0

    def resolve(self, value: str | None) -> datetime:
        """Convert ``YYYYMMDD HH:MM`` in the operator zone to an absolute instant."""
        resolved = self.try_resolve(value)
        if resolved is None:
            return self._fallback(value)
        return resolved

    def try_resolve(self, value: str | None) -> datetime | None:
        """Like ``resolve``, but malformed input gives None instead of now."""
        fields = _parse_fields(value)
        if fields is None:
            return None

        try:
            provisional = datetime(*fields, tzinfo=timezone.utc)
        except ValueError:
            # Impossible calendar date such as Feb 30
            return None

        offset = self._offset_at(provisional)
        corrected = provisional - offset
        # Second pass: the corrected instant may sit on the other side of a
        # DST transition than the provisional one.
        offset = self._offset_at(corrected)
        return provisional - offset

    def _offset_at(self, instant: datetime) -> timedelta:
        return instant.astimezone(self._zone).utcoffset() or timedelta(0)

    def _fallback(self, value: str | None) -> datetime:
        self.malformed_count += 1
        logger.warning(
            "Malformed ACT RealTime timestamp, using current time",
            value=value,
            timezone=self.timezone_name,
        )
        return datetime.now(timezone.utc)


def _parse_fields(value: str | None) -> tuple[int, int, int, int, int, int] | None:
    if not value:
        return None

    match = _TIMESTAMP_RE.match(value.strip())
    if match is None:
        return None

    year = int(match["year"])
    month = int(match["month"])
    day = int(match["day"])
    hour = int(match["hour"])
    minute = int(match["minute"])
    second = int(match["second"] or 0)

    if not (1 <= month <= 12 and 1 <= day <= 31):
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        return None

    return year, month, day, hour, minute, second

