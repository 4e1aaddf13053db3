# src/tracking/models.py — v1
"""Tracking domain models: HandlerError, HandlerHealth."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

HandlerHealthStatus = Literal["healthy", "degraded", "down"]


class HandlerError(BaseModel):
    """Most recent error reported by a handler."""

    code: str
    message: str


class HandlerHealth(BaseModel):
    """Per-handler latency and error-rate summary."""

    handler: str
    total_calls: int
    success_count: int
    failure_count: int
    success_rate: float
    error_rate: float
    latency_samples: int = 0
    avg_latency_ms: float | None = None
    p95_latency_ms: float | None = None
    last_call_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    last_error: HandlerError | None = None
    status: HandlerHealthStatus

    @property
    def has_latency_data(self) -> bool:
        return self.latency_samples > 0
