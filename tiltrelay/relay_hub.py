from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import WebSocket

LOGGER = logging.getLogger(__name__)

# Timing constants for relay fan-out
_SEND_TIMEOUT_S: float = 0.5
"""Per-recipient send timeout; recipients exceeding this are dropped."""

_SEND_ERROR_LOG_INTERVAL_S: float = 10.0
"""Minimum interval between logged send-error warnings to avoid log spam."""


class BroadcastRelay:
    """Forwards every inbound message to every other open connection.

    Payloads are opaque: text frames go out as text, binary frames as bytes,
    unmodified. The active set is only mutated under ``_lock`` and fan-out
    iterates over a snapshot, so a connection closing mid-broadcast never
    disturbs delivery to the rest.
    """

    def __init__(self, send_timeout_s: float = _SEND_TIMEOUT_S):
        self._connections: dict[int, WebSocket] = {}
        self._lock = asyncio.Lock()
        self._send_timeout_s = send_timeout_s
        self._last_send_error_log_ts = 0.0
        self._send_error_log_interval_s = _SEND_ERROR_LOG_INTERVAL_S

    async def add(self, websocket: WebSocket) -> int:
        async with self._lock:
            self._connections[id(websocket)] = websocket
            return len(self._connections)

    async def remove(self, websocket: WebSocket) -> int:
        async with self._lock:
            self._connections.pop(id(websocket), None)
            return len(self._connections)

    def connection_count(self) -> int:
        return len(self._connections)

    async def _snapshot(self) -> list[WebSocket]:
        async with self._lock:
            return list(self._connections.values())

    async def _send_one(self, websocket: WebSocket, message: str | bytes) -> WebSocket | None:
        try:
            if isinstance(message, (bytes, bytearray)):
                coro = websocket.send_bytes(bytes(message))
            else:
                coro = websocket.send_text(message)
            await asyncio.wait_for(coro, timeout=self._send_timeout_s)
            return None
        except Exception:
            now = asyncio.get_running_loop().time()
            if (now - self._last_send_error_log_ts) >= self._send_error_log_interval_s:
                self._last_send_error_log_ts = now
                LOGGER.warning(
                    "Relay send failed; recipient will be removed.",
                    exc_info=True,
                )
            return websocket

    async def forward(self, sender: Any, message: str | bytes) -> int:
        """Deliver ``message`` to every open connection except ``sender``.

        Returns the number of recipients that accepted the message.
        """
        recipients = [ws for ws in await self._snapshot() if ws is not sender]
        if not recipients:
            return 0
        results = await asyncio.gather(*(self._send_one(ws, message) for ws in recipients))
        dead = [ws for ws in results if ws is not None]
        for ws in dead:
            await self.remove(ws)
            await self._close_quietly(ws)
        return len(recipients) - len(dead)

    async def _close_quietly(self, websocket: WebSocket) -> None:
        try:
            await websocket.close()
        except Exception:
            LOGGER.debug("Error closing dropped relay connection", exc_info=True)

    async def close_all(self) -> None:
        async with self._lock:
            conns = list(self._connections.values())
            self._connections.clear()
        for ws in conns:
            await self._close_quietly(ws)
