from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ActionTokenRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=256)


class ActionTokenResponse(BaseModel):
    token: str


class StartOffloadResponse(BaseModel):
    total: int
    oversized_skipped: int
    run_id: str | None


class CancelOffloadResponse(BaseModel):
    message: str


class ProgressResponse(BaseModel):
    processed: int
    total: int
    status: str
    errors: int
    oversized_skipped: int
    cancel_requested: bool
    last_update: datetime | None


class JobStateResponse(BaseModel):
    total: int
    processed: int
    errors: int
    oversized_skipped: int
    status: str
    last_update: datetime | None


class TickResponse(BaseModel):
    ticks: int
    outcome: str
    state: JobStateResponse | None


class StallCheckResponse(BaseModel):
    recovered: bool
    run_id: str | None
    idle_seconds: float | None
