"""Shared test helpers for the tiltrelay test suite."""

from __future__ import annotations

import asyncio
import os
import time

# Importing tiltrelay.app must not build a module-level app during tests.
os.environ.setdefault("TILTRELAY_DISABLE_AUTO_APP", "1")


async def async_wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.01) -> bool:
    """Poll *predicate* until truthy, yielding to the event loop between polls."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step_s)
    return False


class FakeClock:
    """Manually advanced clock usable for both second and millisecond APIs."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
