"""Send-side and receive-side orchestration of control samples.

Send side, per tick: latest raw reading -> :class:`TiltConditioner` ->
``ControlSample`` -> every configured :class:`Dispatcher`.

Receive side: pushed relay messages or polled store reads -> decode ->
"last known" sample plus a ``connected`` flag for whatever renders it.

Neither side raises on transport failure. A failed tick is reported as
not connected and the next tick simply tries again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from .conditioning import TiltConditioner
from .connection import ConnectionManager
from .domain_models import ConnectionState, ControlSample, RawReading
from .protocol import decode, encode
from .sample_store import EphemeralSampleStore, StoreRead
from .store_client import SampleStoreClient

LOGGER = logging.getLogger(__name__)

DEFAULT_SEND_HZ = 60
DEFAULT_POLL_HZ = 30

_DISPATCH_ERROR_LOG_INTERVAL_S: float = 10.0
"""Minimum interval between logged dispatch failures to avoid log spam."""


# ---------------------------------------------------------------------------
# Dispatchers
# ---------------------------------------------------------------------------


class Dispatcher(Protocol):
    async def dispatch(self, sample: ControlSample) -> bool: ...


class RelayDispatcher:
    """Sends encoded samples as text frames over a :class:`ConnectionManager`."""

    def __init__(self, manager: ConnectionManager, include_roll: bool = True, tagged: bool = False):
        self.manager = manager
        self.include_roll = include_roll
        self.tagged = tagged

    async def dispatch(self, sample: ControlSample) -> bool:
        if not self.manager.is_connected:
            return False
        payload = encode(sample, include_roll=self.include_roll, tagged=self.tagged)
        return await self.manager.send(payload.decode("utf-8"))


class HttpStoreDispatcher:
    def __init__(self, client: SampleStoreClient):
        self.client = client

    async def dispatch(self, sample: ControlSample) -> bool:
        return await self.client.write(sample)


class LocalStoreDispatcher:
    """Writes straight into an in-process store (same-host pairing)."""

    def __init__(self, store: EphemeralSampleStore, key: str | None = None):
        self.store = store
        self.key = key

    async def dispatch(self, sample: ControlSample) -> bool:
        self.store.put(self.key, sample)
        return True


# ---------------------------------------------------------------------------
# Fixed-rate loop
# ---------------------------------------------------------------------------


async def run_fixed_rate(hz: float, step: Callable[[], Awaitable[object]], name: str) -> None:
    """Await ``step()`` every ``1/hz`` seconds; ticks never overlap."""
    interval = 1.0 / max(1e-3, hz)
    loop = asyncio.get_running_loop()
    while True:
        tick_start = loop.time()
        try:
            await step()
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.warning("%s tick failed; will retry.", name, exc_info=True)
        elapsed = loop.time() - tick_start
        await asyncio.sleep(max(0.0, interval - elapsed))


class _LoopOwner:
    _task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self) -> None:
        """Cancel the background loop. Safe to call when already stopped."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


# ---------------------------------------------------------------------------
# Send side
# ---------------------------------------------------------------------------


class SamplePipeline(_LoopOwner):
    def __init__(
        self,
        conditioner: TiltConditioner,
        dispatchers: Iterable[Dispatcher],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.conditioner = conditioner
        self.dispatchers = list(dispatchers)
        self._clock = clock
        self._reading: RawReading | None = None
        self._fire = False
        self._connected = False
        self._last_sample: ControlSample | None = None
        self._last_error_log_ts = float("-inf")
        self._task = None

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def last_sample(self) -> ControlSample | None:
        return self._last_sample

    def update_reading(self, reading: RawReading) -> None:
        self._reading = reading

    def update_orientation(self, beta: float | None, gamma: float | None) -> None:
        # Orientation events without both angles carry no usable reading.
        if beta is None or gamma is None:
            return
        self._reading = RawReading.from_device_orientation(beta, gamma)

    def set_fire(self, pressed: bool) -> None:
        self._fire = bool(pressed)

    def recenter(self) -> bool:
        if self._reading is None:
            return False
        self.conditioner.recenter(self._reading)
        return True

    def reset(self) -> None:
        self._reading = None
        self._fire = False
        self.conditioner.reset()

    def build_sample(self) -> ControlSample:
        if self._reading is None:
            return ControlSample(pitch=0.0, roll=0.0, fire=1 if self._fire else 0)
        return self.conditioner.condition(self._reading, self._fire, self._clock())

    async def tick(self) -> bool:
        """Build one sample and hand it to every dispatcher.

        Returns whether at least one dispatcher accepted it.
        """
        sample = self.build_sample()
        self._last_sample = sample
        delivered = False
        for dispatcher in self.dispatchers:
            try:
                ok = await dispatcher.dispatch(sample)
            except Exception:
                ok = False
                now = self._clock()
                if (now - self._last_error_log_ts) >= _DISPATCH_ERROR_LOG_INTERVAL_S:
                    self._last_error_log_ts = now
                    LOGGER.warning(
                        "Sample dispatch via %s failed; retrying next tick.",
                        type(dispatcher).__name__,
                        exc_info=True,
                    )
            delivered = delivered or bool(ok)
        self._connected = delivered
        return delivered

    async def run(self, hz: float = DEFAULT_SEND_HZ) -> None:
        await run_fixed_rate(hz, self.tick, "Sample send")

    def start(self, hz: float = DEFAULT_SEND_HZ) -> asyncio.Task[None]:
        if not self.running:
            self._task = asyncio.create_task(self.run(hz), name="sample-send")
        return self._task  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Receive side
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReceiverSnapshot:
    sample: ControlSample
    connected: bool
    received_at: float | None


class SampleReceiver(_LoopOwner):
    """Keeps the last good sample and whether it is still live.

    ``connected`` is false while the transport is down, after a poll reports
    the room disconnected, or once the newest sample is older than
    ``freshness_s``.
    """

    def __init__(
        self,
        freshness_s: float = 2.0,
        conditioner: TiltConditioner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.freshness_s = freshness_s
        self.conditioner = conditioner
        self._clock = clock
        self._sample = ControlSample.neutral()
        self._received_at: float | None = None
        self._transport_connected = False
        self.dropped_packets = 0
        self._task = None

    def _accept(self, sample: ControlSample) -> None:
        now = self._clock()
        if self.conditioner is not None:
            sample = self.conditioner.condition_sample(sample, now)
        self._sample = sample
        self._received_at = now
        self._transport_connected = True

    def _mark_disconnected(self, sample: ControlSample | None = None) -> None:
        # A sample from before the drop must not count as live after a reconnect.
        self._transport_connected = False
        self._received_at = None
        if sample is not None:
            self._sample = sample
        if self.conditioner is not None:
            self.conditioner.reset()

    def on_message(self, data: str | bytes) -> None:
        sample = decode(data)
        if sample is None:
            self.dropped_packets += 1
            return
        self._accept(sample)

    def on_connection_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            self._transport_connected = True
        else:
            self._mark_disconnected()

    def apply_read(self, result: StoreRead) -> None:
        if result.connected:
            self._accept(result.sample)
        else:
            self._mark_disconnected(result.sample)

    async def poll_once(self, client: SampleStoreClient) -> ReceiverSnapshot:
        self.apply_read(await client.read())
        return self.snapshot()

    async def run_polling(self, client: SampleStoreClient, hz: float = DEFAULT_POLL_HZ) -> None:
        await run_fixed_rate(hz, lambda: self.poll_once(client), "Store poll")

    def start_polling(
        self, client: SampleStoreClient, hz: float = DEFAULT_POLL_HZ
    ) -> asyncio.Task[None]:
        if not self.running:
            self._task = asyncio.create_task(self.run_polling(client, hz), name="sample-poll")
        return self._task  # type: ignore[return-value]

    def snapshot(self) -> ReceiverSnapshot:
        connected = (
            self._transport_connected
            and self._received_at is not None
            and (self._clock() - self._received_at) <= self.freshness_s
        )
        return ReceiverSnapshot(
            sample=self._sample,
            connected=connected,
            received_at=self._received_at,
        )
