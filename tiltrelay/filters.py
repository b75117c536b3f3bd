"""Per-axis smoothing filters.

Each filter owns its own running state and turns one raw sample into one
smoothed sample. Filters never clamp, never apply a deadzone and never touch
I/O; that policy lives in :mod:`tiltrelay.conditioning`.
"""

from __future__ import annotations

import math
from typing import Any, Protocol

__all__ = [
    "AdaptiveFilter",
    "AxisFilter",
    "ComplementaryFilter",
    "LowPassFilter",
    "build_filter",
    "smoothing_alpha",
]

_MIN_DT_S: float = 1e-3
"""Smallest time step the adaptive filter will use between two samples."""

FILTER_KINDS: tuple[str, ...] = ("none", "lowpass", "adaptive", "complementary")


class AxisFilter(Protocol):
    def reset(self) -> None: ...

    def apply(self, raw: float, timestamp_s: float | None = None) -> float: ...


def smoothing_alpha(cutoff_hz: float, dt_s: float) -> float:
    """Convert a cutoff frequency and time step into a blend coefficient.

    ``alpha = 1 / (1 + 1 / (2*pi*cutoff*dt))``; larger cutoffs and longer
    steps both push alpha towards 1 (less smoothing).
    """
    r = 2.0 * math.pi * cutoff_hz * dt_s
    return r / (r + 1.0)


class LowPassFilter:
    """Exponential smoothing: ``value += alpha * (raw - value)``.

    The first sample after construction or :meth:`reset` seeds the running
    value, so the first output equals the first input exactly.
    """

    __slots__ = ("alpha", "_value")

    def __init__(self, alpha: float = 0.4):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"LowPassFilter alpha must be in (0, 1], got {alpha!r}")
        self.alpha = float(alpha)
        self._value: float | None = None

    @property
    def value(self) -> float | None:
        return self._value

    def reset(self) -> None:
        self._value = None

    def apply(self, raw: float, timestamp_s: float | None = None) -> float:
        if self._value is None:
            self._value = float(raw)
        else:
            self._value += self.alpha * (raw - self._value)
        return self._value


class ComplementaryFilter:
    """Blend an integrated rate with an absolute but noisy angle.

    ``value = alpha * (value + rate * dt) + (1 - alpha) * angle``. Higher
    ``alpha`` trusts the integrated rate more.
    """

    __slots__ = ("alpha", "_initial", "_value")

    def __init__(self, alpha: float = 0.85, initial_value: float = 0.0):
        if not 0.0 <= alpha <= 1.0:
            raise ValueError(f"ComplementaryFilter alpha must be in [0, 1], got {alpha!r}")
        self.alpha = float(alpha)
        self._initial = float(initial_value)
        self._value = self._initial

    @property
    def value(self) -> float:
        return self._value

    def set_value(self, value: float) -> None:
        self._value = float(value)

    def reset(self) -> None:
        self._value = self._initial

    def apply(self, angle: float, rate: float = 0.0, dt: float = 0.0) -> float:
        self._value = self.alpha * (self._value + rate * dt) + (1.0 - self.alpha) * angle
        return self._value


class AdaptiveFilter:
    """Speed-sensitive low-pass filter.

    The derivative of the signal is estimated and smoothed at ``d_cutoff``;
    the signal itself is then smoothed at
    ``cutoff = min_cutoff + beta * |derivative|``. Slow, small motions are
    heavily smoothed while fast swings pass through with little lag.
    """

    __slots__ = ("min_cutoff", "beta", "d_cutoff", "min_dt", "_x", "_dx", "_last_ts")

    def __init__(
        self,
        min_cutoff: float = 1.0,
        beta: float = 0.0,
        d_cutoff: float = 1.0,
        min_dt: float = _MIN_DT_S,
    ):
        if min_cutoff <= 0 or d_cutoff <= 0:
            raise ValueError("AdaptiveFilter cutoffs must be positive")
        if beta < 0:
            raise ValueError(f"AdaptiveFilter beta must be >= 0, got {beta!r}")
        if min_dt <= 0:
            raise ValueError(f"AdaptiveFilter min_dt must be > 0, got {min_dt!r}")
        self.min_cutoff = float(min_cutoff)
        self.beta = float(beta)
        self.d_cutoff = float(d_cutoff)
        self.min_dt = float(min_dt)
        self._x: float | None = None
        self._dx = 0.0
        self._last_ts: float | None = None

    @property
    def value(self) -> float | None:
        return self._x

    @property
    def derivative(self) -> float:
        return self._dx

    def reset(self) -> None:
        self._x = None
        self._dx = 0.0
        self._last_ts = None

    def apply(self, raw: float, timestamp_s: float | None = None) -> float:
        if timestamp_s is None:
            raise ValueError("AdaptiveFilter.apply requires a timestamp")
        if self._x is None or self._last_ts is None:
            self._x = float(raw)
            self._dx = 0.0
            self._last_ts = float(timestamp_s)
            return self._x

        # Equal or decreasing timestamps still advance by min_dt.
        dt = max(self.min_dt, timestamp_s - self._last_ts)
        self._last_ts = float(timestamp_s)

        rate = (raw - self._x) / dt
        self._dx += smoothing_alpha(self.d_cutoff, dt) * (rate - self._dx)
        cutoff = self.min_cutoff + self.beta * abs(self._dx)
        self._x += smoothing_alpha(cutoff, dt) * (raw - self._x)
        return self._x


def build_filter(kind: str, settings: Any) -> AxisFilter | ComplementaryFilter | None:
    """Create a fresh filter instance from conditioning settings.

    ``settings`` needs the attributes of
    :class:`tiltrelay.config.ConditioningConfig` used by ``kind``.
    """
    if kind == "none":
        return None
    if kind == "lowpass":
        return LowPassFilter(settings.lowpass_alpha)
    if kind == "adaptive":
        return AdaptiveFilter(
            min_cutoff=settings.min_cutoff,
            beta=settings.beta,
            d_cutoff=settings.d_cutoff,
        )
    if kind == "complementary":
        return ComplementaryFilter(settings.complementary_alpha)
    raise ValueError(f"Unknown filter kind {kind!r}; expected one of {FILTER_KINDS}")
