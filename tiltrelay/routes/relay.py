"""WebSocket relay endpoint: every frame goes to every other peer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)


def _peer(ws: WebSocket) -> str:
    client = ws.client
    if client is None:
        return "unknown"
    return f"{client.host}:{client.port}"


def create_relay_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.websocket(state.config.relay.path)
    async def relay_endpoint(ws: WebSocket) -> None:
        peer = _peer(ws)
        await ws.accept()
        total = await state.relay.add(ws)
        LOGGER.info("Relay client connected from %s (total: %d)", peer, total)
        try:
            while True:
                message = await ws.receive()
                if message.get("type") == "websocket.disconnect":
                    break
                payload = message.get("text")
                if payload is None:
                    payload = message.get("bytes")
                if payload is None:
                    continue
                # Awaiting each forward keeps this sender's messages in order.
                await state.relay.forward(ws, payload)
        except WebSocketDisconnect:
            LOGGER.debug("Relay client %s disconnected", peer)
        except Exception:
            LOGGER.warning("Relay connection error from %s; closing it", peer, exc_info=True)
            try:
                await ws.close()
            except Exception:
                LOGGER.debug("Error closing failed relay connection", exc_info=True)
        finally:
            remaining = await state.relay.remove(ws)
            LOGGER.info("Relay client %s disconnected (total: %d)", peer, remaining)

    return router
