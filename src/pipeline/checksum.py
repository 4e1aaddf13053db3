# src/pipeline/checksum.py — v2
"""Chain-hash engine — tamper-evident checksum over a session's event history.

Every event becomes one link of a SHA-256 chain:

    hash_0 = SHA256("GENESIS:" + step + ":" + input_checksum + ":" + output_checksum)
    hash_n = SHA256(hash_{n-1} + ":" + step + ":" + input_checksum + ":" + output_checksum)
    chain_hash = SHA256(session_id + ":" + hash_last)      # "EMPTY" if no events

Events are ordered by (timestamp, id); events sharing an id are collapsed to
the first one in that order. Missing payload checksums hash as empty strings.
Folding the session id into the final hash makes two sessions with the same
step sequence hash differently.

All functions here are pure. The full history is re-chained on every call.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from checkout_ledger.pipeline.constants import EMPTY_CHAIN_MARKER, GENESIS_SEED
from checkout_ledger.pipeline.event import EventValidationError
from checkout_ledger.pipeline.models import (
    PipelineChecksum,
    PipelineDefinition,
    PipelineEvent,
)


def sha256_hex(data: str) -> str:
    """SHA-256 hex digest of a UTF-8 string."""
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


# --- Payload checksums ---


def compute_data_checksum(data: Any) -> str:
    """Checksum a JSON-compatible payload independently of key order.

    Raises:
        EventValidationError: If the payload cannot be serialized to JSON.
    """
    try:
        serialized = json.dumps(
            data,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise EventValidationError([
            {"field": "payload", "message": f"not JSON-serializable: {exc}"}
        ]) from exc
    return sha256_hex(serialized)


def compute_input_checksum(data: Any) -> str:
    """Checksum of a step's input payload."""
    return compute_data_checksum(data)


def compute_output_checksum(data: Any) -> str:
    """Checksum of a step's output payload."""
    return compute_data_checksum(data)


# --- Chain ---


def order_events(events: Iterable[PipelineEvent]) -> list[PipelineEvent]:
    """Sort events into chain order and drop repeated ids.

    Order is (timestamp, id) so the result never depends on insertion order.
    """
    ordered = sorted(events, key=lambda e: (e.timestamp, e.id))
    seen: set[str] = set()
    unique: list[PipelineEvent] = []
    for event in ordered:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique


def compute_step_hash(previous_hash: str | None, event: PipelineEvent) -> str:
    """Hash one link. ``previous_hash`` is None for the first event."""
    prev = GENESIS_SEED if previous_hash is None else previous_hash
    return sha256_hex(
        f"{prev}:{event.step}:{event.input_checksum or ''}:{event.output_checksum or ''}"
    )


def compute_step_hashes(ordered_events: Sequence[PipelineEvent]) -> list[str]:
    """Fold over events already in chain order, returning every link hash."""
    hashes: list[str] = []
    previous: str | None = None
    for event in ordered_events:
        previous = compute_step_hash(previous, event)
        hashes.append(previous)
    return hashes


def finalize_chain_hash(session_id: str, last_hash: str | None) -> str:
    """Fold the session id into the last link hash."""
    return sha256_hex(f"{session_id}:{last_hash or EMPTY_CHAIN_MARKER}")


def compute_chain_hash(session_id: str, events: Iterable[PipelineEvent]) -> str:
    """Chain hash of a session's events (any order)."""
    hashes = compute_step_hashes(order_events(events))
    return finalize_chain_hash(session_id, hashes[-1] if hashes else None)


# --- Validity ---


def successful_steps(events: Iterable[PipelineEvent]) -> set[str]:
    """Distinct steps with at least one success event."""
    return {e.step for e in events if e.status == "success"}


def failed_steps(events: Iterable[PipelineEvent]) -> set[str]:
    """Distinct steps with at least one failure event.

    A failed attempt stays on record even when a retry later succeeds.
    """
    return {e.step for e in events if e.status == "failure"}


def missing_required_steps(
    definition: PipelineDefinition, events: Iterable[PipelineEvent]
) -> list[str]:
    """Required steps with no success event, in definition order."""
    succeeded = successful_steps(events)
    return [step for step in definition.required_steps if step not in succeeded]


def compute_pipeline_checksum(
    session_id: str,
    definition: PipelineDefinition,
    events: Iterable[PipelineEvent],
    computed_at: datetime | None = None,
) -> PipelineChecksum:
    """Compute chain hash and validity verdict for a session.

    Args:
        session_id: Session the events belong to (folded into the hash).
        definition: Pipeline definition supplying the required steps.
        events: The session's full event history, in any order.
        computed_at: Computation time. Defaults to now (UTC).

    Returns:
        PipelineChecksum. Missing or failed required steps yield
        ``is_valid=False``, never an error.
    """
    ordered = order_events(events)
    hashes = compute_step_hashes(ordered)
    succeeded = successful_steps(ordered)

    return PipelineChecksum(
        session_id=session_id,
        pipeline_type=definition.type,
        steps_expected=definition.steps_expected,
        steps_completed=len(succeeded),
        steps_failed=len(failed_steps(ordered)),
        is_valid=all(step in succeeded for step in definition.required_steps),
        chain_hash=finalize_chain_hash(session_id, hashes[-1] if hashes else None),
        computed_at=computed_at or datetime.now(timezone.utc),
    )
