"""In-memory per-room "latest sample" cache with passive expiry.

Used by the polling transport. Entries are immutable and replaced whole on
every write, so a reader either sees the previous entry or the new one.
Expired entries are swept on writes; there is no background timer here.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

from .domain_models import ControlSample

LOGGER = logging.getLogger(__name__)

DEFAULT_ROOM = "default"

FRESHNESS_MS: int = 2000
"""Entries older than this are reported as disconnected."""

RETENTION_MS: int = 5000
"""Entries older than this are physically removed by :meth:`EphemeralSampleStore.sweep`."""


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass(frozen=True, slots=True)
class StoreEntry:
    key: str
    sample: ControlSample
    written_at_ms: int


@dataclass(frozen=True, slots=True)
class StoreRead:
    sample: ControlSample
    connected: bool

    @classmethod
    def disconnected(cls) -> StoreRead:
        return cls(sample=ControlSample.neutral(), connected=False)


class EphemeralSampleStore:
    def __init__(
        self,
        freshness_ms: int = FRESHNESS_MS,
        retention_ms: int = RETENTION_MS,
        default_key: str = DEFAULT_ROOM,
        clock: Callable[[], int] = _monotonic_ms,
    ):
        if freshness_ms < 0:
            raise ValueError(f"freshness_ms must be >= 0, got {freshness_ms!r}")
        if retention_ms < freshness_ms:
            raise ValueError(
                f"retention_ms ({retention_ms}) must not be shorter than "
                f"freshness_ms ({freshness_ms})"
            )
        self.freshness_ms = int(freshness_ms)
        self.retention_ms = int(retention_ms)
        self.default_key = default_key
        self._clock = clock
        self._write_lock = Lock()
        self._entries: dict[str, StoreEntry] = {}

    def now_ms(self) -> int:
        return self._clock()

    def _key(self, key: str | None) -> str:
        return key or self.default_key

    def put(self, key: str | None, sample: ControlSample, now_ms: int | None = None) -> None:
        now = self._clock() if now_ms is None else now_ms
        entry = StoreEntry(key=self._key(key), sample=sample, written_at_ms=now)
        with self._write_lock:
            self._entries[entry.key] = entry
            self._sweep_locked(now)

    def get(self, key: str | None, now_ms: int | None = None) -> StoreRead:
        # Single dict lookup of an immutable entry; never waits on writers.
        entry = self._entries.get(self._key(key))
        if entry is None:
            return StoreRead.disconnected()
        now = self._clock() if now_ms is None else now_ms
        if now - entry.written_at_ms > self.freshness_ms:
            return StoreRead.disconnected()
        return StoreRead(sample=entry.sample, connected=True)

    def sweep(self, now_ms: int | None = None) -> int:
        now = self._clock() if now_ms is None else now_ms
        with self._write_lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now_ms: int) -> int:
        expired = [
            key
            for key, entry in list(self._entries.items())
            if now_ms - entry.written_at_ms > self.retention_ms
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            LOGGER.debug("Swept %d expired room(s): %s", len(expired), ", ".join(expired))
        return len(expired)

    def keys(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
