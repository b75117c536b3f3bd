"""Domain model objects shared by the relay, store and pipeline.

Every transport carries the same ``ControlSample``; wire-level dicts are only
produced or consumed at the edges (``protocol`` and the HTTP routes).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

PITCH_LIMIT_DEG: float = 60.0
"""Semantic pitch range is [-PITCH_LIMIT_DEG, +PITCH_LIMIT_DEG]."""

ROLL_LIMIT_DEG: float = 45.0
"""Semantic roll range is [-ROLL_LIMIT_DEG, +ROLL_LIMIT_DEG]."""

LANDSCAPE_BETA_OFFSET_DEG: float = 90.0
"""Device beta reads ~90 degrees when the handset is held level in landscape."""


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def wrap_angle(deg: float) -> float:
    """Wrap an angle in degrees into [-180, 180]."""
    while deg > 180.0:
        deg -= 360.0
    while deg < -180.0:
        deg += 360.0
    return deg


# ---------------------------------------------------------------------------
# ControlSample
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ControlSample:
    """One ``(pitch, roll, fire)`` reading carried end-to-end.

    Single-axis producers leave ``roll`` at 0 and omit it on the wire.
    """

    pitch: float
    roll: float = 0.0
    fire: int = 0

    @classmethod
    def neutral(cls) -> ControlSample:
        return cls(pitch=0.0, roll=0.0, fire=0)

    def as_dict(self, *, include_roll: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = {"pitch": self.pitch}
        if include_roll:
            out["roll"] = self.roll
        out["fire"] = self.fire
        return out


# ---------------------------------------------------------------------------
# ConnectionState
# ---------------------------------------------------------------------------


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# ---------------------------------------------------------------------------
# RawReading
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawReading:
    """An unfiltered orientation observation, already resolved to pitch/roll.

    Angles are in degrees; the optional rates (deg/s) feed complementary
    filtering when the producer has a gyroscope.
    """

    pitch: float
    roll: float = 0.0
    pitch_rate: float | None = None
    roll_rate: float | None = None

    @classmethod
    def from_device_orientation(cls, beta: float, gamma: float) -> RawReading:
        """Map a landscape "pistol grip" orientation event to pitch/roll.

        Tilting the top edge up raises ``gamma``, which is aim-down on
        screen, so pitch is ``-gamma``. Roll is ``beta`` re-centred on the
        level landscape pose.
        """
        return cls(
            pitch=wrap_angle(-float(gamma)),
            roll=wrap_angle(float(beta) - LANDSCAPE_BETA_OFFSET_DEG),
        )

    def offset_by(self, origin: RawReading) -> RawReading:
        return RawReading(
            pitch=wrap_angle(self.pitch - origin.pitch),
            roll=wrap_angle(self.roll - origin.roll),
            pitch_rate=self.pitch_rate,
            roll_rate=self.roll_rate,
        )
