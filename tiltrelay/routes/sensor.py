"""Polling transport: write and read the latest sample for a room."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..api_models import SampleReadResponse, SampleWriteRequest, SampleWriteResponse

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)

NO_CACHE_HEADERS: dict[str, str] = {"Cache-Control": "no-cache, no-store"}


def create_sensor_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    def _room(value: str | None) -> str:
        room = (value or "").strip()
        return room or state.config.store.default_room

    @router.post("/api/sensor", response_model=SampleWriteResponse)
    async def write_sample(request: Request) -> SampleWriteResponse:
        try:
            body = await request.json()
            req = SampleWriteRequest.model_validate(body)
        except (ValidationError, ValueError, RecursionError) as exc:
            # RecursionError comes from json.loads on deeply nested bodies.
            LOGGER.debug("Rejecting sensor write: %s", exc)
            raise HTTPException(status_code=400, detail="Invalid data") from exc
        state.store.put(_room(req.room), req.to_sample())
        return {"ok": True}

    @router.get("/api/sensor", response_model=SampleReadResponse)
    async def read_sample(room: str | None = Query(default=None, max_length=128)) -> JSONResponse:
        result = state.store.get(_room(room))
        content = {**result.sample.as_dict(), "connected": result.connected}
        return JSONResponse(content=content, headers=NO_CACHE_HEADERS)

    return router
