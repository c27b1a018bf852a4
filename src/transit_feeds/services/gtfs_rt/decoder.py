"""GTFS-RT protobuf decode layer.

Besides parsing, the decoder reports on feed freshness. AC Transit keeps
serving the last good snapshot when its producer stalls, so a 200 response
can carry positions that are minutes old.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Optional

from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from transit_feeds.exceptions import FeedDecodeError
from transit_feeds.logging import get_logger

logger = get_logger(__name__)

DEFAULT_STALE_THRESHOLD_SEC = 120


class GtfsRtDecoder:
    """Turns raw protobuf bytes into FeedMessages and checks their age."""

    def __init__(
        self,
        stale_threshold_sec: float = DEFAULT_STALE_THRESHOLD_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.stale_threshold_sec = stale_threshold_sec
        self._clock = clock

    def decode(self, data: bytes, feed_type: str) -> gtfs_realtime_pb2.FeedMessage:
        """Parse ``data`` as a FeedMessage.

        Raises:
            FeedDecodeError: If protobuf parsing fails.
        """
        feed = gtfs_realtime_pb2.FeedMessage()
        try:
            feed.ParseFromString(data)
        except DecodeError as exc:
            msg = f"Failed to decode {feed_type} protobuf"
            logger.error(msg, feed_type=feed_type, size_bytes=len(data), error=str(exc))
            raise FeedDecodeError(msg) from exc

        logger.debug(
            "GTFS-RT feed decoded",
            feed_type=feed_type,
            feed_timestamp=feed.header.timestamp or None,
            **self.entity_counts(feed),
        )
        return feed

    def feed_age_sec(self, feed: gtfs_realtime_pb2.FeedMessage) -> Optional[float]:
        """Seconds since the header timestamp, or None when the header has none."""
        if not feed.header.timestamp:
            return None
        return max(0.0, self._clock() - feed.header.timestamp)

    def is_stale(self, feed: gtfs_realtime_pb2.FeedMessage, feed_type: str) -> bool:
        """True, with a warning, when the feed is older than the threshold.

        A feed without a header timestamp is never considered stale.
        """
        age = self.feed_age_sec(feed)
        if age is None or age <= self.stale_threshold_sec:
            return False

        logger.warning(
            "Stale GTFS-RT feed detected",
            feed_type=feed_type,
            feed_age_sec=int(age),
            threshold_sec=self.stale_threshold_sec,
        )
        return True

    @staticmethod
    def entity_counts(feed: gtfs_realtime_pb2.FeedMessage) -> dict[str, int]:
        counts = {"trip_updates": 0, "vehicles": 0, "alerts": 0}
        for entity in feed.entity:
            if entity.HasField("trip_update"):
                counts["trip_updates"] += 1
            if entity.HasField("vehicle"):
                counts["vehicles"] += 1
            if entity.HasField("alert"):
                counts["alerts"] += 1
        return counts
