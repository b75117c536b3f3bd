"""Blocking HTTP client for the polling store, with async wrappers.

Requests run on a worker thread via :func:`asyncio.to_thread` so a slow
store never stalls the event loop driving the pipeline.
"""

from __future__ import annotations

import asyncio
import json
import logging
from urllib.error import URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .domain_models import ControlSample
from .protocol import ProtocolError, parse_payload
from .sample_store import StoreRead

LOGGER = logging.getLogger(__name__)

SENSOR_PATH = "/api/sensor"


class SampleStoreClient:
    def __init__(self, base_url: str, room: str | None = None, timeout_s: float = 1.0):
        self.base_url = base_url.rstrip("/")
        self.room = room
        self.timeout_s = timeout_s

    @property
    def sensor_url(self) -> str:
        return f"{self.base_url}{SENSOR_PATH}"

    def write_blocking(self, sample: ControlSample) -> None:
        body = sample.as_dict()
        if self.room:
            body["room"] = self.room
        req = Request(
            self.sensor_url,
            data=json.dumps(body).encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        with urlopen(req, timeout=self.timeout_s) as resp:
            resp.read()

    def read_blocking(self) -> StoreRead:
        url = self.sensor_url
        if self.room:
            url = f"{url}?{urlencode({'room': self.room})}"
        req = Request(url, method="GET", headers={"Cache-Control": "no-cache"})
        with urlopen(req, timeout=self.timeout_s) as resp:
            body = resp.read()
        parsed = json.loads(body.decode("utf-8")) if body else {}
        if not isinstance(parsed, dict) or not parsed.get("connected"):
            return StoreRead.disconnected()
        return StoreRead(sample=parse_payload(parsed), connected=True)

    async def write(self, sample: ControlSample) -> bool:
        try:
            await asyncio.to_thread(self.write_blocking, sample)
        except (URLError, OSError, TimeoutError, ValueError):
            LOGGER.debug("Store write to %s failed", self.sensor_url, exc_info=True)
            return False
        return True

    async def read(self) -> StoreRead:
        try:
            return await asyncio.to_thread(self.read_blocking)
        except (
            URLError,
            OSError,
            TimeoutError,
            ProtocolError,
            ValueError,
            OverflowError,
            RecursionError,
        ):
            LOGGER.debug("Store read from %s failed", self.sensor_url, exc_info=True)
            return StoreRead.disconnected()
