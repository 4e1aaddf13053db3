# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides an event factory, fixed timestamps and fresh in-memory trackers.
No external dependencies — Redis is always mocked.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from checkout_ledger.logging.context import clear_context
from checkout_ledger.pipeline.checksum import compute_data_checksum
from checkout_ledger.pipeline.models import PipelineDefinition, PipelineEvent
from checkout_ledger.pipeline.registry import (
    PIPELINE_CHECKOUT_DIGITAL,
    PIPELINE_CHECKOUT_PHYSICAL,
)
from checkout_ledger.pipeline.session_registry import SessionRegistry
from checkout_ledger.pipeline.tracker import PipelineTracker
from checkout_ledger.storage.memory_store import (
    InMemoryEventStore,
    InMemorySnapshotStore,
)

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_event(
    step: str = "buyer_validated",
    status: str = "success",
    *,
    session_id: str = "chk_001",
    pipeline_type: str = "checkout_digital",
    offset_s: float = 0,
    sequence: int = 0,
    **overrides,
) -> PipelineEvent:
    """Build a valid event with a deterministic id and timestamp."""
    defaults = dict(
        id=f"{session_id}.{pipeline_type}.{step}.{sequence}.{int(offset_s * 1000):012x}",
        session_id=session_id,
        pipeline_type=pipeline_type,
        step=step,
        status=status,
        sequence=sequence,
        handler="stripe",
        input_checksum=compute_data_checksum({"step": step, "in": True}),
        output_checksum=compute_data_checksum({"step": step, "out": True}),
        duration_ms=120.0,
        timestamp=BASE_TIME + timedelta(seconds=offset_s),
    )
    defaults.update(overrides)
    return PipelineEvent(**defaults)


def make_flow(
    steps: list[str],
    *,
    session_id: str = "chk_001",
    pipeline_type: str = "checkout_digital",
) -> list[PipelineEvent]:
    """One success event per step, one second apart."""
    return [
        make_event(
            step, session_id=session_id, pipeline_type=pipeline_type, offset_s=i,
        )
        for i, step in enumerate(steps)
    ]


@pytest.fixture(autouse=True)
def _clean_log_context():
    clear_context()
    yield
    clear_context()


@pytest.fixture
def digital() -> PipelineDefinition:
    return PIPELINE_CHECKOUT_DIGITAL


@pytest.fixture
def physical() -> PipelineDefinition:
    return PIPELINE_CHECKOUT_PHYSICAL


@pytest.fixture
def digital_flow() -> list[PipelineEvent]:
    """Complete, successful digital checkout."""
    return make_flow(list(PIPELINE_CHECKOUT_DIGITAL.required_steps))


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def snapshot_store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
def tracker(event_store, snapshot_store) -> PipelineTracker:
    return PipelineTracker(
        event_store=event_store,
        snapshot_store=snapshot_store,
        session_registry=SessionRegistry(),
    )


@pytest.fixture
def event_factory():
    """The make_event helper, for tests that build their own histories."""
    return make_event


@pytest.fixture
def flow_factory():
    return make_flow
