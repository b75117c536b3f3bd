"""Clamp, deadzone and per-axis filter policy applied around the filters."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from .domain_models import (
    PITCH_LIMIT_DEG,
    ROLL_LIMIT_DEG,
    ControlSample,
    RawReading,
    clamp,
)
from .filters import AxisFilter, ComplementaryFilter, build_filter

if TYPE_CHECKING:
    from .config import ConditioningConfig

LOGGER = logging.getLogger(__name__)


def apply_deadzone(value: float, deadzone: float, limit: float, *, soft: bool = True) -> float:
    """Snap ``|value| < deadzone`` to zero.

    With ``soft`` the remaining range is rescaled so the output rises from 0
    at the threshold instead of jumping to ``deadzone``.
    """
    if deadzone <= 0:
        return value
    magnitude = abs(value)
    if magnitude < deadzone:
        return 0.0
    if not soft or limit <= deadzone:
        return value
    return math.copysign((magnitude - deadzone) * limit / (limit - deadzone), value)


class AxisConditioner:
    """clamp -> deadzone -> filter -> clamp for a single axis."""

    def __init__(
        self,
        limit: float,
        filter: AxisFilter | ComplementaryFilter | None = None,
        deadzone: float = 0.0,
        soft_deadzone: bool = True,
    ):
        if limit <= 0:
            raise ValueError(f"Axis limit must be positive, got {limit!r}")
        if deadzone < 0 or deadzone >= limit:
            raise ValueError(f"Deadzone must be in [0, limit), got {deadzone!r}")
        self.limit = float(limit)
        self.filter = filter
        self.deadzone = float(deadzone)
        self.soft_deadzone = soft_deadzone

    def reset(self) -> None:
        if self.filter is not None:
            self.filter.reset()

    def process(
        self,
        raw: float,
        timestamp_s: float,
        rate: float | None = None,
        dt: float | None = None,
    ) -> float:
        value = clamp(float(raw), -self.limit, self.limit)
        value = apply_deadzone(value, self.deadzone, self.limit, soft=self.soft_deadzone)
        if isinstance(self.filter, ComplementaryFilter):
            value = self.filter.apply(value, rate or 0.0, dt or 0.0)
        elif self.filter is not None:
            value = self.filter.apply(value, timestamp_s)
        return clamp(value, -self.limit, self.limit)


class TiltConditioner:
    """Owns one :class:`AxisConditioner` per axis and builds samples.

    ``recenter`` makes the current raw orientation the new zero and drops
    accumulated filter state.
    """

    def __init__(
        self,
        pitch: AxisConditioner | None = None,
        roll: AxisConditioner | None = None,
        two_axis: bool = True,
    ):
        self.pitch = pitch or AxisConditioner(PITCH_LIMIT_DEG)
        self.roll = roll or AxisConditioner(ROLL_LIMIT_DEG)
        self.two_axis = two_axis
        self._origin: RawReading | None = None
        self._last_ts: float | None = None

    @classmethod
    def from_settings(cls, settings: ConditioningConfig) -> TiltConditioner:
        def _axis(limit: float) -> AxisConditioner:
            return AxisConditioner(
                limit=limit,
                filter=build_filter(settings.filter, settings),
                deadzone=settings.deadzone_deg,
                soft_deadzone=settings.soft_deadzone,
            )

        return cls(
            pitch=_axis(settings.pitch_limit_deg),
            roll=_axis(settings.roll_limit_deg),
            two_axis=settings.two_axis,
        )

    @property
    def origin(self) -> RawReading | None:
        return self._origin

    def reset(self) -> None:
        self._origin = None
        self._last_ts = None
        self.pitch.reset()
        self.roll.reset()

    def recenter(self, reading: RawReading) -> None:
        LOGGER.info("Recentering at pitch=%.2f roll=%.2f", reading.pitch, reading.roll)
        self._origin = RawReading(pitch=reading.pitch, roll=reading.roll)
        self._last_ts = None
        self.pitch.reset()
        self.roll.reset()

    def _step_dt(self, timestamp_s: float) -> float:
        dt = 0.0 if self._last_ts is None else max(0.0, timestamp_s - self._last_ts)
        self._last_ts = timestamp_s
        return dt

    def condition(self, reading: RawReading, fire: bool | int, timestamp_s: float) -> ControlSample:
        if self._origin is not None:
            reading = reading.offset_by(self._origin)
        dt = self._step_dt(timestamp_s)
        pitch = self.pitch.process(reading.pitch, timestamp_s, rate=reading.pitch_rate, dt=dt)
        roll = 0.0
        if self.two_axis:
            roll = self.roll.process(reading.roll, timestamp_s, rate=reading.roll_rate, dt=dt)
        return ControlSample(pitch=pitch, roll=roll, fire=1 if fire else 0)

    def condition_sample(self, sample: ControlSample, timestamp_s: float) -> ControlSample:
        """Smooth an already-decoded sample (receive side), keeping ``fire``."""
        dt = self._step_dt(timestamp_s)
        pitch = self.pitch.process(sample.pitch, timestamp_s, dt=dt)
        roll = self.roll.process(sample.roll, timestamp_s, dt=dt) if self.two_axis else 0.0
        return ControlSample(pitch=pitch, roll=roll, fire=sample.fire)
