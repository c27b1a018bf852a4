"""Tagged serialization for cache payloads.

Every value is stored as ``{"t": <tag>, "v": <payload>}``. The tag set is
closed; anything outside it is rejected on encode, and an unknown tag is
rejected on decode. Containers are encoded recursively so nested values keep
their shape (a ``set`` inside a ``dict`` comes back as a ``set``).
"""

from __future__ import annotations

import base64
import json
import math
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel

from transit_feeds.exceptions import CacheSerializationError

TAG_NONE = "none"
TAG_BOOL = "bool"
TAG_INT = "int"
TAG_FLOAT = "float"
TAG_STR = "str"
TAG_DATETIME = "datetime"
TAG_BYTES = "bytes"
TAG_PAIRS = "pairs"
TAG_SET = "set"
TAG_LIST = "list"
TAG_TUPLE = "tuple"
TAG_RECORD = "record"
TAG_MODEL = "model"

ModelT = TypeVar("ModelT", bound=type[BaseModel])

# Pydantic models allowed through the cache, keyed by class name
_MODEL_REGISTRY: dict[str, type[BaseModel]] = {}


def cacheable(cls: ModelT) -> ModelT:
    """Register a pydantic model so instances can be cached."""
    name = cls.__name__
    existing = _MODEL_REGISTRY.get(name)
    if existing is not None and existing is not cls:
        raise CacheSerializationError(f"Duplicate cacheable model name: {name}")
    _MODEL_REGISTRY[name] = cls
    return cls


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a value into its tagged JSON-compatible form."""
    # bool is checked before int since it subclasses it
    if value is None:
        return {"t": TAG_NONE, "v": None}
    if isinstance(value, bool):
        return {"t": TAG_BOOL, "v": value}
    if isinstance(value, int):
        return {"t": TAG_INT, "v": value}
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CacheSerializationError(f"Cannot cache non-finite float: {value!r}")
        return {"t": TAG_FLOAT, "v": value}
    if isinstance(value, str):
        return {"t": TAG_STR, "v": value}
    if isinstance(value, datetime):
        if value.tzinfo is None or value.utcoffset() is None:
            raise CacheSerializationError("Cannot cache naive datetime")
        return {"t": TAG_DATETIME, "v": value.isoformat()}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"t": TAG_BYTES, "v": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, BaseModel):
        name = type(value).__name__
        if _MODEL_REGISTRY.get(name) is not type(value):
            raise CacheSerializationError(f"Model {name} is not registered as cacheable")
        return {"t": TAG_MODEL, "v": {"model": name, "data": value.model_dump(mode="json")}}
    if isinstance(value, dict):
        if all(isinstance(key, str) for key in value):
            return {"t": TAG_RECORD, "v": {key: encode_value(item) for key, item in value.items()}}
        return {
            "t": TAG_PAIRS,
            "v": [[encode_value(key), encode_value(item)] for key, item in value.items()],
        }
    if isinstance(value, (set, frozenset)):
        return {"t": TAG_SET, "v": [encode_value(item) for item in value]}
    if isinstance(value, list):
        return {"t": TAG_LIST, "v": [encode_value(item) for item in value]}
    if isinstance(value, tuple):
        return {"t": TAG_TUPLE, "v": [encode_value(item) for item in value]}

    raise CacheSerializationError(f"Unsupported cache value type: {type(value).__name__}")


def decode_value(payload: Any) -> Any:
    """Decode a tagged payload produced by ``encode_value``."""
    if not isinstance(payload, dict) or "t" not in payload:
        raise CacheSerializationError("Cache payload is missing its type tag")

    tag = payload["t"]
    raw = payload.get("v")

    if tag == TAG_NONE:
        return None
    if tag in (TAG_BOOL, TAG_INT, TAG_FLOAT, TAG_STR):
        return raw
    if tag == TAG_DATETIME:
        return datetime.fromisoformat(raw)
    if tag == TAG_BYTES:
        return base64.b64decode(raw)
    if tag == TAG_MODEL:
        model_cls = _MODEL_REGISTRY.get(raw["model"])
        if model_cls is None:
            raise CacheSerializationError(f"Unknown cached model: {raw['model']}")
        return model_cls.model_validate(raw["data"])
    if tag == TAG_RECORD:
        return {key: decode_value(item) for key, item in raw.items()}
    if tag == TAG_PAIRS:
        return {_hashable(decode_value(key)): decode_value(item) for key, item in raw}
    if tag == TAG_SET:
        return {_hashable(decode_value(item)) for item in raw}
    if tag == TAG_LIST:
        return [decode_value(item) for item in raw]
    if tag == TAG_TUPLE:
        return tuple(decode_value(item) for item in raw)

    raise CacheSerializationError(f"Unknown cache payload tag: {tag!r}")


def _hashable(value: Any) -> Any:
    if isinstance(value, set):
        return frozenset(value)
    return value


def serialize(value: Any) -> str:
    """Serialize a value to the string stored in Redis or the memory store."""
    return json.dumps(encode_value(value), separators=(",", ":"))


def deserialize(data: str | bytes) -> Any:
    """Inverse of ``serialize``."""
    try:
        payload = json.loads(data)
    except (TypeError, ValueError) as exc:
        raise CacheSerializationError("Cache payload is not valid JSON") from exc
    return decode_value(payload)
