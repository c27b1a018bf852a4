"""GTFS-RT feed fetcher."""

from __future__ import annotations

import hashlib
import inspect

import httpx

from transit_feeds.exceptions import FeedFetchError
from transit_feeds.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 10.0


class GtfsRtFetcher:
    """Downloads GTFS-RT protobuf feeds.

    Failures are raised to the caller as ``FeedFetchError``; there is no
    internal retry. A polling loop decides what to do with a failed poll.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        self._http_client = http_client
        self.timeout_sec = timeout_sec

    async def fetch(self, url: str, feed_type: str) -> bytes:
        """Download a GTFS-RT protobuf feed.

        Args:
            url: Full URL (with token) to fetch.
            feed_type: Label for logging (e.g. "trip_updates").

        Returns:
            Raw protobuf bytes.

        Raises:
            FeedFetchError: On transport failure, non-2xx status or empty body.
        """
        logger.debug("Fetching GTFS-RT feed", feed_type=feed_type)
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url)
            else:
                async with httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout_sec),
                    follow_redirects=True,
                ) as client:
                    response = await client.get(url)

            raise_result = response.raise_for_status()
            if inspect.isawaitable(raise_result):
                await raise_result
            data = response.content
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            msg = f"Failed to fetch {feed_type} feed"
            logger.error(msg, feed_type=feed_type, error=str(exc))
            raise FeedFetchError(msg) from exc

        if not data:
            msg = f"Empty {feed_type} response body"
            logger.error(msg, feed_type=feed_type)
            raise FeedFetchError(msg)

        logger.info(
            "GTFS-RT feed downloaded",
            feed_type=feed_type,
            size_bytes=len(data),
            feed_hash=hashlib.sha256(data).hexdigest()[:12],
        )
        return data
