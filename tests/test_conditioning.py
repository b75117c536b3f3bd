from __future__ import annotations

from pathlib import Path

import pytest

from tiltrelay.conditioning import AxisConditioner, TiltConditioner, apply_deadzone
from tiltrelay.config import load_config
from tiltrelay.domain_models import ControlSample, RawReading
from tiltrelay.filters import AdaptiveFilter, ComplementaryFilter, LowPassFilter


def test_deadzone_snaps_small_values_to_zero() -> None:
    assert apply_deadzone(1.9, 2.0, 60.0) == 0.0
    assert apply_deadzone(-1.9, 2.0, 60.0) == 0.0


def test_soft_deadzone_rescales_remaining_range() -> None:
    assert apply_deadzone(2.0, 2.0, 60.0) == pytest.approx(0.0)
    assert apply_deadzone(32.0, 2.0, 60.0) == pytest.approx(30.0 * 60.0 / 58.0)
    assert apply_deadzone(-60.0, 2.0, 60.0) == pytest.approx(-60.0)


def test_hard_deadzone_passes_values_through() -> None:
    assert apply_deadzone(32.0, 2.0, 60.0, soft=False) == 32.0
    assert apply_deadzone(-2.5, 2.0, 60.0, soft=False) == -2.5


def test_zero_deadzone_is_identity() -> None:
    assert apply_deadzone(0.3, 0.0, 60.0) == 0.3


def test_axis_clamps_without_filter() -> None:
    axis = AxisConditioner(60.0)
    assert axis.process(100.0, 0.0) == 60.0
    assert axis.process(-100.0, 0.0) == -60.0
    assert axis.process(12.5, 0.0) == 12.5


def test_axis_output_never_exceeds_limit_with_filter() -> None:
    axis = AxisConditioner(45.0, filter=LowPassFilter(1.0))
    for raw in (0.0, 500.0, -500.0, 44.9):
        out = axis.process(raw, 0.0)
        assert -45.0 <= out <= 45.0


def test_axis_deadzone_applies_before_filter() -> None:
    axis = AxisConditioner(60.0, filter=LowPassFilter(0.15), deadzone=2.0)
    assert axis.process(1.5, 0.0) == 0.0
    assert axis.process(-1.0, 0.1) == 0.0


def test_axis_feeds_rate_to_complementary_filter() -> None:
    axis = AxisConditioner(60.0, filter=ComplementaryFilter(0.85))
    assert axis.process(10.0, 0.0) == pytest.approx(1.5)
    assert axis.process(10.0, 0.1, rate=10.0, dt=0.1) == pytest.approx(
        0.85 * (1.5 + 1.0) + 0.15 * 10.0
    )


def test_axis_passes_timestamp_to_adaptive_filter() -> None:
    axis = AxisConditioner(60.0, filter=AdaptiveFilter(min_cutoff=1.0))
    assert axis.process(10.0, 0.0) == 10.0
    assert 10.0 < axis.process(20.0, 0.05) < 20.0


@pytest.mark.parametrize("limit, deadzone", [(0.0, 0.0), (-5.0, 0.0), (10.0, 10.0), (10.0, -1.0)])
def test_axis_rejects_invalid_limits(limit: float, deadzone: float) -> None:
    with pytest.raises(ValueError):
        AxisConditioner(limit, deadzone=deadzone)


def test_tilt_conditioner_clamps_each_axis_to_its_own_limit() -> None:
    conditioner = TiltConditioner()
    sample = conditioner.condition(RawReading(pitch=70.0, roll=-50.0), True, 0.0)
    assert sample == ControlSample(pitch=60.0, roll=-45.0, fire=1)


def test_tilt_conditioner_single_axis_reports_zero_roll() -> None:
    conditioner = TiltConditioner(two_axis=False)
    sample = conditioner.condition(RawReading(pitch=10.0, roll=30.0), False, 0.0)
    assert sample.roll == 0.0
    assert sample.pitch == 10.0
    assert sample.fire == 0


def test_recenter_makes_current_pose_zero(caplog) -> None:
    conditioner = TiltConditioner(
        pitch=AxisConditioner(60.0, filter=LowPassFilter(0.4)),
        roll=AxisConditioner(45.0, filter=LowPassFilter(0.4)),
    )
    conditioner.condition(RawReading(pitch=30.0, roll=10.0), False, 0.0)
    with caplog.at_level("INFO", logger="tiltrelay.conditioning"):
        conditioner.recenter(RawReading(pitch=10.0, roll=5.0))
    assert "Recentering" in caplog.text
    assert conditioner.origin == RawReading(pitch=10.0, roll=5.0)

    # Filters were reset, so the first post-recenter sample is exact.
    sample = conditioner.condition(RawReading(pitch=10.0, roll=5.0), False, 1.0)
    assert sample.pitch == pytest.approx(0.0)
    assert sample.roll == pytest.approx(0.0)

    plain = TiltConditioner()
    plain.recenter(RawReading(pitch=10.0, roll=5.0))
    shifted = plain.condition(RawReading(pitch=25.0, roll=0.0), False, 0.0)
    assert shifted.pitch == pytest.approx(15.0)
    assert shifted.roll == pytest.approx(-5.0)


def test_reset_clears_origin() -> None:
    conditioner = TiltConditioner()
    conditioner.recenter(RawReading(pitch=10.0))
    conditioner.reset()
    assert conditioner.origin is None
    assert conditioner.condition(RawReading(pitch=10.0), False, 0.0).pitch == 10.0


def test_condition_sample_keeps_fire() -> None:
    conditioner = TiltConditioner()
    out = conditioner.condition_sample(ControlSample(pitch=80.0, roll=3.0, fire=1), 0.0)
    assert out == ControlSample(pitch=60.0, roll=3.0, fire=1)


def test_from_settings_builds_independent_filters(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.yaml")
    conditioner = TiltConditioner.from_settings(cfg.conditioning)
    assert isinstance(conditioner.pitch.filter, LowPassFilter)
    assert isinstance(conditioner.roll.filter, LowPassFilter)
    assert conditioner.pitch.filter is not conditioner.roll.filter
    assert conditioner.pitch.limit == 60.0
    assert conditioner.roll.limit == 45.0
