"""Command-line producer and watcher for exercising a running relay/store.

``send`` feeds a synthetic tilt motion through the full send pipeline;
``watch`` prints what a consumer would see.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import random
import time
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .conditioning import TiltConditioner
from .config import AppConfig, load_config
from .connection import ConnectionManager
from .domain_models import RawReading
from .pipeline import (
    HttpStoreDispatcher,
    RelayDispatcher,
    SamplePipeline,
    SampleReceiver,
    run_fixed_rate,
)
from .store_client import SampleStoreClient

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SyntheticTilt:
    """Deterministic sway with sensor noise and a periodic trigger pull."""

    pitch_amp_deg: float = 35.0
    roll_amp_deg: float = 25.0
    pitch_hz: float = 0.25
    roll_hz: float = 0.17
    noise_deg: float = 1.5
    fire_every_s: float = 2.0
    fire_hold_s: float = 0.2

    def reading(self, t: float) -> RawReading:
        pitch = self.pitch_amp_deg * math.sin(2 * math.pi * self.pitch_hz * t)
        roll = self.roll_amp_deg * math.sin(2 * math.pi * self.roll_hz * t + 0.5)
        return RawReading(
            pitch=pitch + random.gauss(0.0, self.noise_deg),
            roll=roll + random.gauss(0.0, self.noise_deg),
        )

    def fire(self, t: float) -> bool:
        if self.fire_every_s <= 0:
            return False
        return (t % self.fire_every_s) < self.fire_hold_s


async def _run_for(duration_s: float, loop: Coroutine[Any, Any, None]) -> None:
    """Run ``loop`` until cancelled, or for ``duration_s`` seconds when positive."""
    if duration_s <= 0:
        await loop
        return
    try:
        await asyncio.wait_for(loop, timeout=duration_s)
    except TimeoutError:
        LOGGER.info("Run duration of %.1fs elapsed.", duration_s)


async def run_send(args: argparse.Namespace, config: AppConfig) -> None:
    dispatchers = []
    manager: ConnectionManager | None = None
    if args.relay_url:
        manager = ConnectionManager(secure_schemes=config.client.secure_schemes)
        if not await manager.connect(args.relay_url):
            raise SystemExit(f"Relay URL rejected: {args.relay_url}")
        dispatchers.append(
            RelayDispatcher(manager, include_roll=config.conditioning.two_axis)
        )
    if args.store_url:
        client = SampleStoreClient(
            args.store_url, room=args.room, timeout_s=config.client.http_timeout_s
        )
        dispatchers.append(HttpStoreDispatcher(client))
    if not dispatchers:
        raise SystemExit("Nothing to send to; pass --relay-url and/or --store-url")

    pipeline = SamplePipeline(TiltConditioner.from_settings(config.conditioning), dispatchers)
    profile = SyntheticTilt()
    start = time.monotonic()
    last_report = start

    async def step() -> None:
        nonlocal last_report
        t = time.monotonic() - start
        pipeline.update_reading(profile.reading(t))
        pipeline.set_fire(profile.fire(t))
        await pipeline.tick()
        if time.monotonic() - last_report >= 1.0:
            last_report = time.monotonic()
            sample = pipeline.last_sample
            if sample is not None:
                LOGGER.info(
                    "pitch=%+6.2f roll=%+6.2f fire=%d connected=%s",
                    sample.pitch,
                    sample.roll,
                    sample.fire,
                    pipeline.connected,
                )

    try:
        hz = args.hz or config.client.send_hz
        await _run_for(args.duration, run_fixed_rate(hz, step, "Synthetic send"))
    finally:
        if manager is not None:
            await manager.disconnect()


async def run_watch(args: argparse.Namespace, config: AppConfig) -> None:
    receiver = SampleReceiver(freshness_s=config.store.freshness_ms / 1000.0)
    manager: ConnectionManager | None = None
    client: SampleStoreClient | None = None
    if args.relay_url:
        manager = ConnectionManager(
            on_message=receiver.on_message,
            on_state_change=receiver.on_connection_state,
            secure_schemes=config.client.secure_schemes,
        )
        if not await manager.connect(args.relay_url):
            raise SystemExit(f"Relay URL rejected: {args.relay_url}")
    elif args.store_url:
        client = SampleStoreClient(
            args.store_url, room=args.room, timeout_s=config.client.http_timeout_s
        )
        receiver.start_polling(client, hz=config.client.poll_hz)
    else:
        raise SystemExit("Nothing to watch; pass --relay-url or --store-url")

    async def show() -> None:
        snap = receiver.snapshot()
        print(
            f"pitch={snap.sample.pitch:+6.2f} roll={snap.sample.roll:+6.2f} "
            f"fire={snap.sample.fire} connected={snap.connected} "
            f"dropped={receiver.dropped_packets}"
        )

    try:
        await _run_for(args.duration, run_fixed_rate(args.hz or 10, show, "Watch"))
    finally:
        await receiver.stop()
        if manager is not None:
            await manager.disconnect()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="tiltrelay sample producer / watcher")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("send", "Stream a synthetic tilt motion"),
        ("watch", "Print the samples a consumer receives"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--relay-url", default=None, help="wss:// relay endpoint")
        cmd.add_argument("--store-url", default=None, help="Base http(s) URL of the store")
        cmd.add_argument("--room", default=None, help="Store room (default: server default)")
        cmd.add_argument("--hz", type=float, default=None, help="Loop rate override")
        cmd.add_argument(
            "--duration", type=float, default=0.0, help="Seconds to run (0 = forever)"
        )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(levelname)s: %(message)s",
    )
    config = load_config(args.config)
    runner = run_send if args.command == "send" else run_watch
    try:
        asyncio.run(runner(args, config))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; exiting.")


if __name__ == "__main__":
    main()
