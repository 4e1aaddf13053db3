# src/pipeline/receipt.py — v1
"""Receipt generator — per-step audit trail of a chain-hash computation.

A receipt carries, for every link, the previous hash and the step hash, so
anyone holding the receipt can re-derive the chain without the event store.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from checkout_ledger.pipeline.checksum import (
    compute_pipeline_checksum,
    compute_step_hashes,
    finalize_chain_hash,
    missing_required_steps,
    order_events,
    sha256_hex,
)
from checkout_ledger.pipeline.constants import GENESIS_SEED
from checkout_ledger.pipeline.models import (
    PipelineDefinition,
    PipelineEvent,
    PipelineReceipt,
    PipelineReceiptEntry,
)


def compute_receipt(
    session_id: str,
    definition: PipelineDefinition,
    events: Iterable[PipelineEvent],
    computed_at: datetime | None = None,
) -> PipelineReceipt:
    """Build the receipt for a session's event history.

    Args:
        session_id: Session the events belong to.
        definition: Pipeline definition supplying the required steps.
        events: Full event history, in any order.
        computed_at: Computation time. Defaults to now (UTC).

    Returns:
        PipelineReceipt whose ``chain_hash`` equals the one from
        compute_pipeline_checksum over the same events.
    """
    ordered = order_events(events)
    checksum = compute_pipeline_checksum(
        session_id, definition, ordered, computed_at=computed_at
    )
    hashes = compute_step_hashes(ordered)

    entries: list[PipelineReceiptEntry] = []
    previous: str | None = None
    for position, (event, step_hash) in enumerate(zip(ordered, hashes)):
        entries.append(
            PipelineReceiptEntry(
                position=position,
                event_id=event.id,
                step=event.step,
                status=event.status,
                sequence=event.sequence,
                handler=event.handler,
                timestamp=event.timestamp,
                input_checksum=event.input_checksum,
                output_checksum=event.output_checksum,
                previous_hash=previous,
                step_hash=step_hash,
            )
        )
        previous = step_hash

    return PipelineReceipt(
        **checksum.model_dump(),
        entries=entries,
        missing_steps=missing_required_steps(definition, ordered),
    )


def verify_receipt(receipt: PipelineReceipt) -> bool:
    """Re-derive every link and the final hash from the receipt entries.

    Returns:
        True when each entry links to its predecessor, each step hash matches
        its recorded inputs, and the final chain hash matches.
    """
    previous: str | None = None
    for position, entry in enumerate(receipt.entries):
        if entry.position != position or entry.previous_hash != previous:
            return False
        prev = GENESIS_SEED if previous is None else previous
        expected = sha256_hex(
            f"{prev}:{entry.step}:{entry.input_checksum or ''}:{entry.output_checksum or ''}"
        )
        if entry.step_hash != expected:
            return False
        previous = entry.step_hash

    return finalize_chain_hash(receipt.session_id, previous) == receipt.chain_hash
