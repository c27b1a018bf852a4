"""Tests for the tagged cache serializer."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from transit_feeds.cache.serialization import deserialize, serialize
from transit_feeds.exceptions import CacheSerializationError
from transit_feeds.models.act_realtime import BusStopPredictionRaw, BusStopProfileRaw
from transit_feeds.models.transit import AlertSeverity, BusPosition, ServiceAlert


class TestSerializeScalars:
    """Scalars keep their Python type."""

    def test_bool_is_not_int(self) -> None:
        assert deserialize(serialize(True)) is True
        assert json.loads(serialize(True))["t"] == "bool"
        assert json.loads(serialize(1))["t"] == "int"

    def test_cached_none_is_distinct_from_miss(self) -> None:
        assert serialize(None) == '{"t":"none","v":null}'
        assert deserialize(serialize(None)) is None

    def test_non_finite_float_rejected(self) -> None:
        with pytest.raises(CacheSerializationError):
            serialize(float("nan"))
        with pytest.raises(CacheSerializationError):
            serialize(float("inf"))

    def test_datetime_keeps_instant(self) -> None:
        value = datetime(2025, 3, 15, 8, 30, tzinfo=timezone(timedelta(hours=-7)))
        restored = deserialize(serialize(value))

        assert isinstance(restored, datetime)
        assert restored == value

    def test_naive_datetime_rejected(self) -> None:
        with pytest.raises(CacheSerializationError, match="naive"):
            serialize(datetime(2025, 1, 1))

    def test_bytes_are_base64(self) -> None:
        payload = json.loads(serialize(b"\x00\xff"))
        assert payload == {"t": "bytes", "v": "AP8="}
        assert deserialize(serialize(b"\x00\xff")) == b"\x00\xff"


class TestSerializeContainers:
    """Containers are encoded recursively."""

    def test_dict_with_non_string_keys_becomes_pairs(self) -> None:
        value = {1: "a", 2: "b"}
        assert json.loads(serialize(value))["t"] == "pairs"
        assert deserialize(serialize(value)) == value

    def test_pairs_keep_insertion_order(self) -> None:
        value = {3: "c", 1: "a", 2: "b"}
        assert list(deserialize(serialize(value))) == [3, 1, 2]

    def test_set_inside_record(self) -> None:
        value = {"routes": {"51A", "72R"}}
        restored = deserialize(serialize(value))

        assert restored == value
        assert isinstance(restored["routes"], set)

    def test_tuple_and_list_are_distinct(self) -> None:
        assert deserialize(serialize((1, 2))) == (1, 2)
        assert deserialize(serialize([1, 2])) == [1, 2]

    def test_unsupported_type_rejected(self) -> None:
        with pytest.raises(CacheSerializationError, match="Unsupported"):
            serialize(object())


class TestSerializeModels:
    """Registered pydantic models come back as instances."""

    def test_domain_model(self) -> None:
        position = BusPosition(
            vehicle_id="1501",
            route_id="51A",
            latitude=37.8,
            longitude=-122.27,
            timestamp=datetime(2025, 1, 15, 20, 0, tzinfo=timezone.utc),
        )
        assert deserialize(serialize([position])) == [position]

    def test_alert_tuple_fields_survive(self) -> None:
        alert = ServiceAlert(
            id="a1",
            header_text="Detour",
            severity=AlertSeverity.SEVERE,
            affected_routes=("51A", "51B"),
        )
        restored = deserialize(serialize(alert))

        assert restored == alert
        assert restored.severity is AlertSeverity.SEVERE

    def test_raw_prediction_map(self) -> None:
        value = {
            "55555": [BusStopPredictionRaw(stpid="55555", vid="1501", prdctdn="Due")],
            "55556": [],
        }
        assert deserialize(serialize(value)) == value

    def test_raw_profile_map(self) -> None:
        value = {"55555": BusStopProfileRaw(stpid="55555", geoid="1001", stpnm="Broadway")}
        assert deserialize(serialize(value)) == value


class TestDeserializeErrors:
    """Anything outside the closed tag set is rejected."""

    def test_unknown_tag(self) -> None:
        with pytest.raises(CacheSerializationError, match="Unknown cache payload tag"):
            deserialize('{"t":"pickle","v":"..."}')

    def test_missing_tag(self) -> None:
        with pytest.raises(CacheSerializationError, match="missing its type tag"):
            deserialize('{"v":1}')

    def test_invalid_json(self) -> None:
        with pytest.raises(CacheSerializationError, match="not valid JSON"):
            deserialize("{not json")

    def test_unknown_model(self) -> None:
        with pytest.raises(CacheSerializationError, match="Unknown cached model"):
            deserialize('{"t":"model","v":{"model":"Nope","data":{}}}')
