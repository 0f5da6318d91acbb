"""
TagCache - Value Serialization

Values are a tagged union over str, int, float, bool, None, bytes and
composite (list/dict) values. JSON-native values travel as plain JSON so
other clients and the dashboard see them as-is. Values JSON cannot carry
unambiguously travel in an envelope::

    {"$tc": "<kind>", "v": <payload>}

- ``bytes``: base64 payload
- ``str``: a string that would itself parse as JSON ("123", "true", "[1]"),
  or one containing a line break, so the server never stores text that
  breaks TCP line framing
- ``composite``: a dict that collides with the envelope shape, as base64 JSON
"""

import base64
import binascii
import json
import logging
import math
from enum import Enum
from typing import Any

from .errors import ApiError

logger = logging.getLogger(__name__)

TYPE_KEY = "$tc"
PAYLOAD_KEY = "v"


class ValueKind(str, Enum):
    """Type tag carried by enveloped values."""

    STRING = "str"
    INTEGER = "int"
    FLOAT = "float"
    BOOLEAN = "bool"
    NULL = "null"
    BYTES = "bytes"
    COMPOSITE = "composite"


def value_kind(value: Any) -> ValueKind:
    """Classify a Python value into its ValueKind."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueKind.BYTES
    return ValueKind.COMPOSITE


def _envelope(kind: ValueKind, payload: Any) -> dict[str, Any]:
    return {TYPE_KEY: kind.value, PAYLOAD_KEY: payload}


def _is_envelope(obj: Any) -> bool:
    return isinstance(obj, dict) and set(obj.keys()) == {TYPE_KEY, PAYLOAD_KEY}


def _parses_as_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def to_wire(value: Any) -> Any:
    """
    Convert a Python value into a JSON-compatible wire value.

    Raises:
        ApiError: If the value cannot be serialized
    """
    kind = value_kind(value)

    if kind is ValueKind.BYTES:
        return _envelope(ValueKind.BYTES, _b64(bytes(value)))

    if kind is ValueKind.STRING:
        if _parses_as_json(value) or "\n" in value or "\r" in value:
            return _envelope(ValueKind.STRING, value)
        return value

    if kind is ValueKind.COMPOSITE:
        if isinstance(value, (tuple, set, frozenset)):
            value = list(value)
        try:
            encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ApiError(
                f"Value of type {type(value).__name__} is not serializable: {e}",
                details={"value_type": type(value).__name__},
            ) from e
        if _is_envelope(value):
            return _envelope(ValueKind.COMPOSITE, _b64(encoded.encode("utf-8")))
        return value

    if kind is ValueKind.FLOAT and not math.isfinite(value):
        raise ApiError("NaN and infinite floats are not serializable", details={"value_type": "float"})

    return value


def from_wire(obj: Any) -> Any:
    """Convert a decoded wire value back into the original Python value."""
    if not _is_envelope(obj):
        return obj

    kind, payload = obj[TYPE_KEY], obj[PAYLOAD_KEY]
    try:
        if kind == ValueKind.BYTES.value:
            return base64.b64decode(payload, validate=True)
        if kind == ValueKind.STRING.value:
            return str(payload)
        if kind == ValueKind.COMPOSITE.value:
            return json.loads(base64.b64decode(payload, validate=True).decode("utf-8"))
    except (binascii.Error, ValueError, TypeError) as e:
        logger.warning(
            f"Failed to decode {kind} envelope, returning raw value: {e}",
            extra={"kind": kind, "error": str(e)},
        )
        return obj

    # Unknown tag: leave the dict untouched
    return obj


def encode_text(value: Any) -> str:
    """
    Encode a value for the TCP line protocol.

    Plain strings travel raw; everything else is JSON text, which also escapes
    newlines so the value cannot break line framing.
    """
    wire = to_wire(value)
    if isinstance(wire, str):
        return wire
    return json.dumps(wire, ensure_ascii=False, separators=(",", ":"))


def decode_text(raw: str) -> Any:
    """Decode a TCP value: JSON if it parses, otherwise the raw string."""
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw
    return from_wire(parsed)
