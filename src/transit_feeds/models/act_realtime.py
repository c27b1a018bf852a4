"""Raw ACT RealTime payloads, validated at the JSON boundary.

Numeric fields are kept as sent (the API mixes numbers, numeric strings and
blanks) and parsed per field by the normalizer, so one bad value never
rejects a whole response. Field names mirror the upstream API. Note that
``stpid`` is the public 5-digit stop code, not the GTFS stop_id (that one
is ``geoid``).
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from transit_feeds.cache.serialization import cacheable


class _RawModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
        frozen=True,
    )


@cacheable
class BusStopProfileRaw(_RawModel):
    """Response item for GET /stop."""

    stpid: str  # stop code
    stpnm: str = ""
    geoid: str = ""  # GTFS stop_id
    lat: Optional[Any] = None
    lon: Optional[Any] = None


@cacheable
class BusStopPredictionRaw(_RawModel):
    """Response item for GET /prediction."""

    stpid: str  # stop code
    tmstmp: str = ""  # "20250918 05:55"
    typ: str = ""  # "A" arrival, "D" departure
    stpnm: str = ""
    vid: str = ""
    dstp: Optional[Any] = None  # feet
    rt: str = ""
    rtdd: str = ""
    rtdir: str = ""  # free-text direction description
    des: str = ""
    prdtm: str = ""  # predicted time, operator local
    tatripid: str = ""
    prdctdn: str = ""  # "Due" or minutes
    schdtm: str = ""
    seq: Optional[Any] = None


@cacheable
class BusPositionRaw(_RawModel):
    """Response item for GET /vehicle."""

    vid: str = ""
    rt: str = ""
    des: str = ""
    tmstmp: str = ""
    lat: Optional[str] = None
    lon: Optional[str] = None
    hdg: Optional[str] = None  # degrees
    spd: Optional[Any] = None  # mph
    pid: Optional[Any] = None
    pdist: Optional[Any] = None
    dly: Optional[bool] = None
    tablockid: Optional[str] = None
    tatripid: Optional[str] = None
    tripid: Optional[Union[int, str]] = None
    zone: Optional[str] = None
    psgld: Optional[str] = None


def _empty_if_none(value: Any) -> Any:
    return [] if value is None else value


def _body_if_none(value: Any) -> Any:
    return {} if value is None else value


class StopsPayload(_RawModel):
    stops: list[BusStopProfileRaw] = Field(default_factory=list)

    @field_validator("stops", mode="before")
    @classmethod
    def _stops_default(cls, value: Any) -> Any:
        return _empty_if_none(value)


class PredictionsPayload(_RawModel):
    prd: list[BusStopPredictionRaw] = Field(default_factory=list)

    @field_validator("prd", mode="before")
    @classmethod
    def _prd_default(cls, value: Any) -> Any:
        return _empty_if_none(value)


class VehiclesPayload(_RawModel):
    vehicle: list[BusPositionRaw] = Field(default_factory=list)

    @field_validator("vehicle", mode="before")
    @classmethod
    def _vehicle_default(cls, value: Any) -> Any:
        return _empty_if_none(value)


class SystemTimePayload(_RawModel):
    tm: Optional[str] = None  # epoch milliseconds as a string


# Envelopes: every response wraps its payload in "bustime-response". A
# missing or null wrapper is read as an empty payload.


class StopsResponse(_RawModel):
    body: StopsPayload = Field(default_factory=StopsPayload, alias="bustime-response")

    @field_validator("body", mode="before")
    @classmethod
    def _body_default(cls, value: Any) -> Any:
        return _body_if_none(value)


class PredictionsResponse(_RawModel):
    body: PredictionsPayload = Field(
        default_factory=PredictionsPayload, alias="bustime-response"
    )

    @field_validator("body", mode="before")
    @classmethod
    def _body_default(cls, value: Any) -> Any:
        return _body_if_none(value)


class VehiclesResponse(_RawModel):
    body: VehiclesPayload = Field(default_factory=VehiclesPayload, alias="bustime-response")

    @field_validator("body", mode="before")
    @classmethod
    def _body_default(cls, value: Any) -> Any:
        return _body_if_none(value)


class SystemTimeResponse(_RawModel):
    body: SystemTimePayload = Field(
        default_factory=SystemTimePayload, alias="bustime-response"
    )

    @field_validator("body", mode="before")
    @classmethod
    def _body_default(cls, value: Any) -> Any:
        return _body_if_none(value)
