"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    pending_payment_actions: int


class ErrorResponse(BaseModel):
    """Standard failure envelope."""

    model_config = ConfigDict(extra="forbid")
    success: Literal[False]
    error: str
    message: str
    details: dict[str, object]
