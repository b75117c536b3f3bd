from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeClock, async_wait_until

from tiltrelay.conditioning import AxisConditioner, TiltConditioner
from tiltrelay.domain_models import ConnectionState, ControlSample, RawReading
from tiltrelay.filters import LowPassFilter
from tiltrelay.pipeline import (
    HttpStoreDispatcher,
    LocalStoreDispatcher,
    RelayDispatcher,
    SamplePipeline,
    SampleReceiver,
    run_fixed_rate,
)
from tiltrelay.sample_store import EphemeralSampleStore, StoreRead


class RecordingDispatcher:
    def __init__(self, result: bool = True, error: Exception | None = None):
        self.result = result
        self.error = error
        self.samples: list[ControlSample] = []

    async def dispatch(self, sample: ControlSample) -> bool:
        if self.error is not None:
            raise self.error
        self.samples.append(sample)
        return self.result


# -- Send side ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_tick_without_reading_sends_neutral_sample_with_fire() -> None:
    out = RecordingDispatcher()
    pipeline = SamplePipeline(TiltConditioner(), [out])
    pipeline.set_fire(True)

    assert await pipeline.tick() is True
    assert out.samples == [ControlSample(pitch=0.0, roll=0.0, fire=1)]


@pytest.mark.asyncio
async def test_tick_conditions_latest_orientation() -> None:
    out = RecordingDispatcher()
    pipeline = SamplePipeline(TiltConditioner(), [out])

    pipeline.update_orientation(beta=90.0, gamma=10.0)
    pipeline.update_orientation(beta=100.0, gamma=-80.0)
    await pipeline.tick()

    assert out.samples[-1] == ControlSample(pitch=60.0, roll=10.0, fire=0)
    assert pipeline.last_sample == out.samples[-1]


@pytest.mark.asyncio
async def test_incomplete_orientation_events_are_ignored() -> None:
    out = RecordingDispatcher()
    pipeline = SamplePipeline(TiltConditioner(), [out])
    pipeline.update_orientation(beta=90.0, gamma=5.0)
    pipeline.update_orientation(beta=None, gamma=40.0)
    await pipeline.tick()
    assert out.samples[-1].pitch == -5.0


@pytest.mark.asyncio
async def test_dispatch_errors_are_contained(caplog) -> None:
    broken = RecordingDispatcher(error=OSError("network down"))
    healthy = RecordingDispatcher()
    pipeline = SamplePipeline(TiltConditioner(), [broken, healthy])

    with caplog.at_level("WARNING", logger="tiltrelay.pipeline"):
        assert await pipeline.tick() is True
        assert await pipeline.tick() is True
    assert len(healthy.samples) == 2
    # Rate-limited: one warning for two consecutive failures.
    assert caplog.text.count("Sample dispatch via RecordingDispatcher failed") == 1


@pytest.mark.asyncio
async def test_connected_is_false_when_no_dispatcher_accepts() -> None:
    pipeline = SamplePipeline(
        TiltConditioner(), [RecordingDispatcher(result=False), RecordingDispatcher(error=OSError())]
    )
    assert await pipeline.tick() is False
    assert pipeline.connected is False


@pytest.mark.asyncio
async def test_recenter_uses_latest_reading() -> None:
    out = RecordingDispatcher()
    pipeline = SamplePipeline(TiltConditioner(), [out])
    assert pipeline.recenter() is False

    pipeline.update_reading(RawReading(pitch=20.0, roll=5.0))
    assert pipeline.recenter() is True
    await pipeline.tick()
    assert out.samples[-1] == ControlSample(pitch=0.0, roll=0.0, fire=0)


@pytest.mark.asyncio
async def test_reset_forgets_reading_and_fire() -> None:
    out = RecordingDispatcher()
    pipeline = SamplePipeline(TiltConditioner(), [out])
    pipeline.update_reading(RawReading(pitch=20.0))
    pipeline.set_fire(True)
    pipeline.reset()
    await pipeline.tick()
    assert out.samples[-1] == ControlSample.neutral()


@pytest.mark.asyncio
async def test_start_runs_fixed_rate_loop_until_stopped() -> None:
    out = RecordingDispatcher()
    pipeline = SamplePipeline(TiltConditioner(), [out])

    task = pipeline.start(hz=200)
    assert pipeline.start(hz=200) is task
    assert await async_wait_until(lambda: len(out.samples) >= 3)
    await pipeline.stop()
    assert pipeline.running is False

    count = len(out.samples)
    await asyncio.sleep(0.03)
    assert len(out.samples) == count
    await pipeline.stop()


@pytest.mark.asyncio
async def test_relay_dispatcher_skips_when_not_connected() -> None:
    manager = MagicMock()
    manager.is_connected = False
    manager.send = AsyncMock(return_value=True)

    assert await RelayDispatcher(manager).dispatch(ControlSample(pitch=1.0)) is False
    manager.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_relay_dispatcher_sends_encoded_text() -> None:
    manager = MagicMock()
    manager.is_connected = True
    manager.send = AsyncMock(return_value=True)

    dispatcher = RelayDispatcher(manager, include_roll=False, tagged=True)
    assert await dispatcher.dispatch(ControlSample(pitch=1.5, roll=9.0, fire=1)) is True
    (payload,), _ = manager.send.await_args
    assert json.loads(payload) == {"type": "state", "pitch": 1.5, "fire": 1}


@pytest.mark.asyncio
async def test_http_store_dispatcher_delegates_to_client() -> None:
    client = MagicMock()
    client.write = AsyncMock(return_value=False)
    sample = ControlSample(pitch=2.0)
    assert await HttpStoreDispatcher(client).dispatch(sample) is False
    client.write.assert_awaited_once_with(sample)


@pytest.mark.asyncio
async def test_local_store_dispatcher_writes_into_store() -> None:
    store = EphemeralSampleStore(clock=lambda: 0)
    pipeline = SamplePipeline(TiltConditioner(), [LocalStoreDispatcher(store, key="desk")])
    pipeline.update_reading(RawReading(pitch=7.0))
    await pipeline.tick()
    assert store.get("desk").sample.pitch == 7.0


# -- Receive side -------------------------------------------------------------


def test_receiver_starts_disconnected_and_neutral() -> None:
    receiver = SampleReceiver()
    snap = receiver.snapshot()
    assert snap.connected is False
    assert snap.sample == ControlSample.neutral()
    assert snap.received_at is None


def test_receiver_accepts_pushed_messages_and_goes_stale() -> None:
    clock = FakeClock(100.0)
    receiver = SampleReceiver(freshness_s=2.0, clock=clock)
    receiver.on_connection_state(ConnectionState.CONNECTED)

    receiver.on_message('{"type":"state","pitch":12,"fire":1}')
    snap = receiver.snapshot()
    assert snap.connected is True
    assert snap.sample == ControlSample(pitch=12.0, roll=0.0, fire=1)

    clock.advance(2.5)
    snap = receiver.snapshot()
    assert snap.connected is False
    assert snap.sample.pitch == 12.0


def test_receiver_counts_and_skips_bad_packets() -> None:
    receiver = SampleReceiver()
    receiver.on_message('{"pitch":3,"fire":0}')
    receiver.on_message("garbage")
    receiver.on_message('{"pitch":3}')
    assert receiver.dropped_packets == 2
    assert receiver.snapshot().sample.pitch == 3.0


def test_receiver_transport_loss_marks_disconnected() -> None:
    receiver = SampleReceiver()
    receiver.on_message('{"pitch":3,"fire":0}')
    receiver.on_connection_state(ConnectionState.DISCONNECTED)
    snap = receiver.snapshot()
    assert snap.connected is False
    assert snap.sample.pitch == 3.0


def test_receiver_apply_read() -> None:
    receiver = SampleReceiver()
    receiver.apply_read(StoreRead(sample=ControlSample(pitch=9.0, fire=1), connected=True))
    assert receiver.snapshot().connected is True

    receiver.apply_read(StoreRead.disconnected())
    snap = receiver.snapshot()
    assert snap.connected is False
    assert snap.sample == ControlSample.neutral()


def test_receiver_conditioner_smooths_and_resets() -> None:
    conditioner = TiltConditioner(
        pitch=AxisConditioner(60.0, filter=LowPassFilter(0.5)),
        roll=AxisConditioner(45.0, filter=LowPassFilter(0.5)),
    )
    receiver = SampleReceiver(conditioner=conditioner)
    receiver.on_message('{"pitch":0,"fire":0}')
    receiver.on_message('{"pitch":10,"fire":1}')
    snap = receiver.snapshot()
    assert snap.sample.pitch == pytest.approx(5.0)
    assert snap.sample.fire == 1

    receiver.on_connection_state(ConnectionState.DISCONNECTED)
    receiver.on_message('{"pitch":10,"fire":0}')
    assert receiver.snapshot().sample.pitch == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_receiver_polls_store_client() -> None:
    client = MagicMock()
    client.read = AsyncMock(
        return_value=StoreRead(sample=ControlSample(pitch=4.0, roll=1.0, fire=0), connected=True)
    )
    receiver = SampleReceiver()

    snap = await receiver.poll_once(client)
    assert snap.connected is True
    assert snap.sample == ControlSample(pitch=4.0, roll=1.0, fire=0)

    receiver.start_polling(client, hz=200)
    assert await async_wait_until(lambda: client.read.await_count >= 3)
    await receiver.stop()
    assert receiver.running is False


def test_receiver_counts_oversized_numbers_as_dropped() -> None:
    receiver = SampleReceiver()
    receiver.on_message('{"pitch": 1' + "0" * 400 + ', "fire": 0}')
    assert receiver.dropped_packets == 1
    assert receiver.snapshot().sample == ControlSample.neutral()


def test_receiver_reconnect_does_not_revive_sample_from_before_drop() -> None:
    clock = FakeClock(50.0)
    receiver = SampleReceiver(freshness_s=2.0, clock=clock)
    receiver.on_message('{"pitch":8,"fire":1}')
    receiver.on_connection_state(ConnectionState.DISCONNECTED)
    clock.advance(0.5)
    receiver.on_connection_state(ConnectionState.CONNECTED)

    snap = receiver.snapshot()
    assert snap.connected is False
    assert snap.received_at is None

    receiver.on_message('{"pitch":9,"fire":0}')
    assert receiver.snapshot().connected is True


@pytest.mark.asyncio
async def test_fixed_rate_loop_subtracts_tick_duration() -> None:
    ticks: list[float] = []

    async def _slow_step() -> None:
        ticks.append(asyncio.get_running_loop().time())
        await asyncio.sleep(0.04)

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(run_fixed_rate(20, _slow_step, "Slow"), timeout=0.5)

    # 50 ms cadence holds even though each step takes 40 ms.
    assert len(ticks) >= 8
