"""Error taxonomy for feed ingestion.

Streams and the HTTP layer branch on two families: ``TransientError`` is about
upstream availability and a polling loop survives it; ``ConfigurationError``
is about the parameters of the request itself and ends a subscription.
"""

from __future__ import annotations


class TransitFeedError(Exception):
    """Base class for all feed ingestion errors."""


class TransientError(TransitFeedError):
    """Upstream was unreachable or returned something unusable."""


class ConfigurationError(TransitFeedError):
    """The caller asked for something that cannot be served."""


class UpstreamTransportError(TransientError):
    """Network-level failure talking to an upstream API."""


class UpstreamHTTPError(TransientError):
    """Upstream answered with a non-success status other than 404."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class FeedFetchError(TransientError):
    """Raised when a GTFS-RT feed download fails."""


class FeedDecodeError(TransientError):
    """Raised when protobuf decoding fails."""


class MalformedResponseError(TransientError):
    """A load-bearing field in an upstream response is missing or invalid."""


class StopNotFoundError(ConfigurationError):
    """No stop profile exists for the requested stop code."""

    def __init__(self, stop_code: str) -> None:
        super().__init__(f"No bus stop profile found for stop code {stop_code}")
        self.stop_code = stop_code


class BatchLimitError(ConfigurationError):
    """More identifiers were passed to a single upstream call than it accepts."""


class NormalizationError(ValueError):
    """Raised when a raw record cannot be turned into a domain entity."""


class CacheSerializationError(TransitFeedError):
    """Raised when a value cannot be encoded or a payload cannot be decoded."""
