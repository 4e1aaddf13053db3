# src/pipeline/models.py — v1
"""Pipeline domain models: PipelineEvent, PipelineDefinition, PipelineChecksum,
ChecksumRegistryEntry, PipelineReceipt and the tracker's derived views.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from checkout_ledger.pipeline.constants import (
    CHECKSUM_PATTERN,
    MAX_SEQUENCE,
    SESSION_ID_MAX_LENGTH,
    SESSION_ID_PATTERN,
    PipelineEventStatus,
    PipelineStep,
)


def _check_session_id(value: str) -> str:
    if not value or len(value) > SESSION_ID_MAX_LENGTH:
        raise ValueError(
            f"session_id must be 1..{SESSION_ID_MAX_LENGTH} characters long"
        )
    if not SESSION_ID_PATTERN.match(value):
        raise ValueError("session_id must be URL-safe (alphanumeric, _, -)")
    return value


def _check_checksum(value: str | None) -> str | None:
    if value is not None and not CHECKSUM_PATTERN.match(value):
        raise ValueError("must be a lowercase SHA-256 hex digest (64 chars)")
    return value


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PipelineEvent(BaseModel):
    """One recorded step execution. Immutable once created."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1, max_length=256)
    session_id: str
    pipeline_type: str = Field(min_length=1)
    step: PipelineStep
    status: PipelineEventStatus
    sequence: int = Field(default=0, ge=0, le=MAX_SEQUENCE)
    handler: str | None = None
    input_checksum: str | None = None
    output_checksum: str | None = None
    duration_ms: float | None = Field(default=None, ge=0)
    error: str | None = None
    metadata: dict[str, Any] | None = None
    timestamp: datetime

    @field_validator("session_id")
    @classmethod
    def validate_session_id(cls, v: str) -> str:  # noqa: N805
        return _check_session_id(v)

    @field_validator("input_checksum", "output_checksum")
    @classmethod
    def validate_checksum(cls, v: str | None) -> str | None:  # noqa: N805
        return _check_checksum(v)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:  # noqa: N805
        return _ensure_utc(v)


class PipelineDefinition(BaseModel):
    """Required and optional steps for one pipeline type."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str = Field(min_length=1)
    required_steps: tuple[PipelineStep, ...]
    optional_steps: tuple[PipelineStep, ...] = ()

    @model_validator(mode="after")
    def validate_disjoint(self) -> PipelineDefinition:
        overlap = set(self.required_steps) & set(self.optional_steps)
        if overlap:
            raise ValueError(
                f"steps cannot be both required and optional: {sorted(overlap)}"
            )
        if len(set(self.required_steps)) != len(self.required_steps):
            raise ValueError("required_steps contains duplicates")
        if len(set(self.optional_steps)) != len(self.optional_steps):
            raise ValueError("optional_steps contains duplicates")
        return self

    @property
    def steps_expected(self) -> int:
        return len(self.required_steps) + len(self.optional_steps)


class PipelineChecksum(BaseModel):
    """Derived chain hash and validity verdict for one session."""

    session_id: str
    pipeline_type: str
    steps_expected: int = Field(ge=0)
    steps_completed: int = Field(ge=0)
    steps_failed: int = Field(ge=0)
    is_valid: bool
    chain_hash: str
    computed_at: datetime


class ChecksumRegistryEntry(BaseModel):
    """Persisted snapshot of a checksum at a moment in time."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    session_id: str
    pipeline_type: str = Field(min_length=1)
    chain_hash: str
    steps_expected: int = Field(ge=0)
    steps_completed: int = Field(ge=0)
    steps_failed: int = Field(ge=0)
    is_valid: bool
    created_at: datetime
    notes: str | None = None
    event_ids: list[str] = []

    @field_validator("session_id")
    @classmethod
    def validate_session_id(cls, v: str) -> str:  # noqa: N805
        return _check_session_id(v)

    @field_validator("chain_hash")
    @classmethod
    def validate_chain_hash(cls, v: str) -> str:  # noqa: N805
        if _check_checksum(v) is None:
            raise ValueError("chain_hash is required")
        return v

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:  # noqa: N805
        return _ensure_utc(v)


class PipelineReceiptEntry(BaseModel):
    """One link of the chain, as shown on a receipt."""

    position: int = Field(ge=0)
    event_id: str
    step: PipelineStep
    status: PipelineEventStatus
    sequence: int = 0
    handler: str | None = None
    timestamp: datetime
    input_checksum: str | None = None
    output_checksum: str | None = None
    previous_hash: str | None = None
    step_hash: str


class PipelineReceipt(PipelineChecksum):
    """Checksum plus the per-step audit trail."""

    entries: list[PipelineReceiptEntry] = []
    missing_steps: list[PipelineStep] = []


class TrackResult(BaseModel):
    """Outcome of PipelineTracker.track_event."""

    event: PipelineEvent
    snapshot: ChecksumRegistryEntry | None = None


class TamperSignal(BaseModel):
    """Live chain hash compared with the last persisted snapshot."""

    session_id: str
    live_chain_hash: str
    snapshot_chain_hash: str | None = None
    snapshot_id: str | None = None
    is_consistent: bool


class StatusSummary(BaseModel):
    """Everything a polling dashboard needs for one session."""

    session_id: str
    pipeline_type: str
    events: list[PipelineEvent] = []
    current_checksum: PipelineChecksum
    latest_snapshot: ChecksumRegistryEntry | None = None
    registry_history: list[ChecksumRegistryEntry] = []


class IssueReport(BaseModel):
    """Debug report for a pipeline that did not complete cleanly."""

    session_id: str
    pipeline_type: str
    is_valid: bool
    failed_steps: list[str] = []
    missing_steps: list[str] = []
    events: list[PipelineEvent] = []
    checksum_history: list[ChecksumRegistryEntry] = []
    report_generated_at: datetime
