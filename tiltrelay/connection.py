"""Client-side owner of a single outbound relay WebSocket.

At most one connection is live per manager: every ``connect`` tears down the
previous one first. ``send`` only goes out while connected; nothing is
queued for later delivery.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any
from urllib.parse import urlsplit

import websockets

from .domain_models import ConnectionState

LOGGER = logging.getLogger(__name__)

DEFAULT_SECURE_SCHEMES: tuple[str, ...] = ("wss",)

Connector = Callable[[str], Awaitable[Any]]
MessageCallback = Callable[[str | bytes], None]
StateCallback = Callable[[ConnectionState], None]

# No open deadline: a connect that never resolves stays CONNECTING until
# the caller disconnects or connects elsewhere.
_default_connector: Connector = functools.partial(websockets.connect, open_timeout=None)


async def _close_quietly(handle: Any) -> None:
    try:
        await handle.close()
    except Exception:
        LOGGER.debug("Error while closing relay connection", exc_info=True)


class ConnectionManager:
    def __init__(
        self,
        on_message: MessageCallback | None = None,
        on_state_change: StateCallback | None = None,
        secure_schemes: Iterable[str] = DEFAULT_SECURE_SCHEMES,
        connector: Connector | None = None,
    ):
        self._on_message = on_message
        self._on_state_change = on_state_change
        self._secure_schemes = tuple(s.lower() for s in secure_schemes)
        self._connector = connector or _default_connector
        self._state = ConnectionState.DISCONNECTED
        self._handle: Any | None = None
        self._address: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def address(self) -> str | None:
        return self._address

    def is_allowed_address(self, address: str) -> bool:
        try:
            scheme = urlsplit(address).scheme.lower()
        except ValueError:
            return False
        return bool(scheme) and scheme in self._secure_schemes

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        LOGGER.debug("Relay connection %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                LOGGER.warning("Connection state callback failed", exc_info=True)

    async def connect(self, address: str) -> bool:
        """Replace any current connection with one to ``address``.

        Returns ``False`` (and stays disconnected) when the address does not
        use one of the configured secure schemes.
        """
        async with self._lock:
            await self._teardown()
            if not self.is_allowed_address(address):
                LOGGER.warning(
                    "Refusing to connect to %r; scheme must be one of %s",
                    address,
                    ", ".join(self._secure_schemes),
                )
                return False
            self._generation += 1
            self._address = address
            self._set_state(ConnectionState.CONNECTING)
            self._task = asyncio.create_task(
                self._run(address, self._generation),
                name="relay-connection",
            )
            return True

    async def _run(self, address: str, generation: int) -> None:
        handle: Any | None = None
        try:
            handle = await self._connector(address)
            if generation != self._generation:
                # Superseded while opening; finally closes the handle.
                return
            self._handle = handle
            self._set_state(ConnectionState.CONNECTED)
            LOGGER.info("Connected to relay %s", address)
            async for message in handle:
                self._deliver(message)
            LOGGER.info("Relay %s closed the connection", address)
        except asyncio.CancelledError:
            raise
        except Exception:
            # An error while connecting is handled exactly like a close.
            LOGGER.warning("Relay connection to %s failed", address, exc_info=True)
        finally:
            if generation == self._generation:
                self._handle = None
                self._address = None
                self._set_state(ConnectionState.DISCONNECTED)
            if handle is not None:
                await _close_quietly(handle)

    def _deliver(self, message: str | bytes) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(message)
        except Exception:
            LOGGER.warning("Relay message callback failed", exc_info=True)

    async def send(self, data: str | bytes) -> bool:
        """Send ``data`` if connected; otherwise drop it and return ``False``."""
        handle = self._handle
        if self._state is not ConnectionState.CONNECTED or handle is None:
            return False
        try:
            await handle.send(data)
        except Exception:
            LOGGER.warning("Relay send failed; dropping connection", exc_info=True)
            await self.disconnect()
            return False
        return True

    async def disconnect(self) -> None:
        """Close the current connection, if any. Safe to call repeatedly."""
        async with self._lock:
            await self._teardown()

    async def _teardown(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        handle, self._handle = self._handle, None
        self._address = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        elif handle is not None:
            await _close_quietly(handle)
        self._set_state(ConnectionState.DISCONNECTED)
