"""Pydantic request/response models for the tiltrelay HTTP API."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain_models import ControlSample

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SampleWriteRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    room: str | None = Field(default=None, max_length=128)
    pitch: float
    roll: float | None = None
    fire: int = Field(ge=0, le=1)

    @field_validator("pitch", "roll")
    @classmethod
    def _finite(cls, value: float | None) -> float | None:
        if value is not None and not math.isfinite(value):
            raise ValueError("must be finite")
        return value

    def to_sample(self) -> ControlSample:
        return ControlSample(
            pitch=self.pitch,
            roll=self.roll if self.roll is not None else 0.0,
            fire=self.fire,
        )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SampleWriteResponse(BaseModel):
    ok: bool


class SampleReadResponse(BaseModel):
    pitch: float
    roll: float
    fire: int
    connected: bool


class HealthResponse(BaseModel):
    status: str
    relay_connections: int
    store_rooms: int
