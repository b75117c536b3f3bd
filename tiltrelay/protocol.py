"""JSON wire codec for control samples.

Two inbound shapes are accepted without a version flag:

* untagged: ``{"pitch": 12.5, "roll": -3.0, "fire": 0}``
* tagged:   ``{"type": "state", "pitch": 12.5, "fire": 1}``

Both collapse to :class:`~tiltrelay.domain_models.ControlSample` as soon as
they are parsed.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from .domain_models import ControlSample

LOGGER = logging.getLogger(__name__)

STATE_MESSAGE_TYPE = "state"
FIRE_VALUES: frozenset[int] = frozenset({0, 1})

_JSON_SEPARATORS = (",", ":")


class ProtocolError(ValueError):
    pass


def _number(obj: dict[str, Any], key: str) -> float:
    value = obj[key]
    # bool is an int subclass; a boolean angle is always a producer bug.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"{key} must be a number, got {type(value).__name__}")
    try:
        out = float(value)
    except OverflowError as exc:
        raise ProtocolError(f"{key} is out of range") from exc
    if not math.isfinite(out):
        raise ProtocolError(f"{key} must be finite, got {value!r}")
    return out


def _fire(obj: dict[str, Any]) -> int:
    value = obj["fire"]
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int) and value in FIRE_VALUES:
        return value
    if isinstance(value, float) and value in FIRE_VALUES:
        return int(value)
    raise ProtocolError(f"fire must be 0 or 1, got {value!r}")


def _is_tagged(obj: dict[str, Any]) -> bool:
    return obj.get("type") == STATE_MESSAGE_TYPE and "pitch" in obj and "fire" in obj


def _is_untagged(obj: dict[str, Any]) -> bool:
    return "pitch" in obj and "fire" in obj


def parse_payload(obj: Any) -> ControlSample:
    """Validate an already JSON-decoded payload and normalise it.

    Raises :class:`ProtocolError` when neither shape matches or a field is
    invalid. ``roll`` is optional in both shapes and defaults to 0.
    """
    if not isinstance(obj, dict):
        raise ProtocolError(f"payload must be an object, got {type(obj).__name__}")
    if not (_is_tagged(obj) or _is_untagged(obj)):
        raise ProtocolError("payload is missing pitch or fire")
    roll = _number(obj, "roll") if obj.get("roll") is not None else 0.0
    return ControlSample(pitch=_number(obj, "pitch"), roll=roll, fire=_fire(obj))


def decode(data: bytes | bytearray | str) -> ControlSample | None:
    """Decode one wire message; returns ``None`` for anything malformed."""
    try:
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        obj = json.loads(data)
        return parse_payload(obj)
    except (ProtocolError, ValueError, TypeError, OverflowError, RecursionError) as exc:
        # json.JSONDecodeError and UnicodeDecodeError are ValueErrors;
        # RecursionError comes from json.loads on deeply nested input.
        LOGGER.debug("Dropping undecodable sample payload: %s", exc)
        return None


def encode(sample: ControlSample, *, include_roll: bool = True, tagged: bool = False) -> bytes:
    """Serialise ``sample`` to its canonical compact JSON form."""
    for name in ("pitch", "roll"):
        if not math.isfinite(getattr(sample, name)):
            raise ProtocolError(f"{name} must be finite, got {getattr(sample, name)!r}")
    if sample.fire not in FIRE_VALUES:
        raise ProtocolError(f"fire must be 0 or 1, got {sample.fire!r}")
    payload: dict[str, Any] = {}
    if tagged:
        payload["type"] = STATE_MESSAGE_TYPE
    payload.update(sample.as_dict(include_roll=include_roll))
    return json.dumps(payload, separators=_JSON_SEPARATORS, allow_nan=False).encode("utf-8")
