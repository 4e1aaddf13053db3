# src/pipeline/tracker.py — v2
"""Pipeline tracker — single entry point for events and checksum snapshots.

Composes an event store, a snapshot store, the pipeline registry and the
chain-hash engine. Use cases:
    1. Track events as they occur in the checkout flow
    2. Snapshot checksums to the registry, automatically or on request
    3. Query live state for dashboards and polling clients
    4. Compare the live chain hash with the last snapshot (tamper signal)
    5. Build receipts and issue reports

Calls for the same session are serialized by a per-session asyncio.Lock so
a snapshot always reflects exactly the events stored before it. Calls for
different sessions never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from checkout_ledger.config.settings import Settings
from checkout_ledger.logging.context import reset_session_context, set_session_context
from checkout_ledger.pipeline.checksum import (
    compute_pipeline_checksum,
    failed_steps,
    missing_required_steps,
    order_events,
)
from checkout_ledger.pipeline.event import validate_event
from checkout_ledger.pipeline.models import (
    ChecksumRegistryEntry,
    IssueReport,
    PipelineChecksum,
    PipelineDefinition,
    PipelineEvent,
    PipelineReceipt,
    StatusSummary,
    TamperSignal,
    TrackResult,
)
from checkout_ledger.pipeline.receipt import compute_receipt
from checkout_ledger.pipeline.registry import DEFAULT_REGISTRY, PipelineRegistry
from checkout_ledger.pipeline.session_registry import SessionRegistry
from checkout_ledger.storage.base_store import BaseEventStore, BaseSnapshotStore
from checkout_ledger.storage.memory_store import InMemorySnapshotStore

logger = logging.getLogger(__name__)


def create_registry_entry(
    checksum: PipelineChecksum,
    notes: str | None = None,
    event_ids: list[str] | None = None,
) -> ChecksumRegistryEntry:
    """Freeze a checksum into a registry entry."""
    return ChecksumRegistryEntry(
        id=f"reg_{checksum.session_id}_{uuid.uuid4().hex[:12]}",
        session_id=checksum.session_id,
        pipeline_type=checksum.pipeline_type,
        chain_hash=checksum.chain_hash,
        steps_expected=checksum.steps_expected,
        steps_completed=checksum.steps_completed,
        steps_failed=checksum.steps_failed,
        is_valid=checksum.is_valid,
        created_at=datetime.now(timezone.utc),
        notes=notes,
        event_ids=event_ids or [],
    )


class PipelineTracker:
    """Orchestrating facade over storage, registry and chain-hash engine."""

    def __init__(
        self,
        event_store: BaseEventStore,
        snapshot_store: BaseSnapshotStore | None = None,
        auto_snapshot: bool = True,
        session_registry: SessionRegistry | None = None,
        pipeline_registry: PipelineRegistry | None = None,
    ) -> None:
        self._events = event_store
        self._snapshots = (
            snapshot_store if snapshot_store is not None else InMemorySnapshotStore()
        )
        self._auto_snapshot = auto_snapshot
        self._sessions = (
            session_registry if session_registry is not None else SessionRegistry()
        )
        self._registry = (
            pipeline_registry if pipeline_registry is not None else DEFAULT_REGISTRY
        )
        # Idle locks are evicted once no coroutine holds or awaits them.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def auto_snapshot(self) -> bool:
        return self._auto_snapshot

    @property
    def session_registry(self) -> SessionRegistry:
        return self._sessions

    def _session_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # --- Events ---

    async def track_event(
        self,
        event: PipelineEvent | Mapping[str, Any],
        definition: PipelineDefinition | None = None,
    ) -> TrackResult:
        """Validate and store an event, then optionally snapshot the checksum.

        Args:
            event: Event (or raw mapping) to record.
            definition: Pipeline definition for the snapshot. Looked up from
                ``event.pipeline_type`` when omitted.

        Returns:
            TrackResult with the stored event and the snapshot, if one was taken.

        Raises:
            EventValidationError: If the event is invalid. Nothing is stored.
        """
        validated = validate_event(event)
        session_id = validated.session_id
        tokens = set_session_context(session_id, validated.pipeline_type)
        snapshot: ChecksumRegistryEntry | None = None
        try:
            async with self._session_lock(session_id):
                await self._events.store(validated)
                if self._sessions.register(session_id):
                    logger.info("New session tracked: %s", session_id)
                logger.debug(
                    "Stored event %s (%s, %s)",
                    validated.id, validated.step, validated.status,
                )

                if self._auto_snapshot:
                    resolved = (
                        definition
                        if definition is not None
                        else self._registry.get(validated.pipeline_type)
                    )
                    if resolved is None:
                        logger.warning(
                            "No definition for pipeline type %r; skipping snapshot",
                            validated.pipeline_type,
                        )
                    else:
                        snapshot = await self._snapshot_locked(
                            session_id,
                            resolved,
                            notes=f"Auto-snapshot after event: {validated.step}",
                        )
        finally:
            reset_session_context(tokens)

        return TrackResult(event=validated, snapshot=snapshot)

    async def get_events(self, session_id: str) -> list[PipelineEvent]:
        """All stored events of a session, unfiltered."""
        return await self._events.list_by_scope(session_id)

    async def list_sessions(self) -> list[str]:
        """Session ids known to the event store."""
        return await self._events.list_sessions()

    # --- Checksums ---

    async def get_current_checksum(
        self, session_id: str, definition: PipelineDefinition
    ) -> PipelineChecksum:
        """Re-derive the live checksum from the full event history."""
        events = await self._events.list_by_scope(session_id)
        return compute_pipeline_checksum(session_id, definition, events)

    async def get_receipt(
        self, session_id: str, definition: PipelineDefinition
    ) -> PipelineReceipt:
        events = await self._events.list_by_scope(session_id)
        return compute_receipt(session_id, definition, events)

    async def snapshot_checksum(
        self,
        session_id: str,
        definition: PipelineDefinition,
        notes: str | None = None,
    ) -> ChecksumRegistryEntry:
        """Compute the current checksum and append it to the registry."""
        async with self._session_lock(session_id):
            return await self._snapshot_locked(session_id, definition, notes)

    async def _snapshot_locked(
        self,
        session_id: str,
        definition: PipelineDefinition,
        notes: str | None,
    ) -> ChecksumRegistryEntry:
        events = order_events(await self._events.list_by_scope(session_id))
        checksum = compute_pipeline_checksum(session_id, definition, events)
        entry = create_registry_entry(
            checksum, notes=notes, event_ids=[e.id for e in events]
        )
        await self._snapshots.store(entry)
        logger.debug(
            "Snapshot %s: valid=%s completed=%d/%d",
            entry.id, entry.is_valid, entry.steps_completed, entry.steps_expected,
        )
        return entry

    # --- Registry queries ---

    async def get_latest_snapshot(self, session_id: str) -> ChecksumRegistryEntry | None:
        return await self._snapshots.latest(session_id)

    async def get_registry_history(self, session_id: str) -> list[ChecksumRegistryEntry]:
        """All snapshots of a session, newest first."""
        return await self._snapshots.list_by_scope(session_id)

    async def get_tamper_signal(
        self, session_id: str, definition: PipelineDefinition
    ) -> TamperSignal:
        """Compare the live chain hash with the last-known-good snapshot.

        A mismatch means history changed after the snapshot was taken.
        """
        live = await self.get_current_checksum(session_id, definition)
        snapshot = await self._snapshots.latest(session_id)
        consistent = snapshot is None or snapshot.chain_hash == live.chain_hash
        if not consistent:
            logger.warning(
                "Chain hash diverged from snapshot %s for session %s",
                snapshot.id if snapshot else None, session_id,
            )
        return TamperSignal(
            session_id=session_id,
            live_chain_hash=live.chain_hash,
            snapshot_chain_hash=snapshot.chain_hash if snapshot else None,
            snapshot_id=snapshot.id if snapshot else None,
            is_consistent=consistent,
        )

    # --- Summaries ---

    async def get_status_summary(
        self, session_id: str, definition: PipelineDefinition
    ) -> StatusSummary:
        """Events, live checksum and snapshots for client-side polling."""
        events, current, latest, history = await asyncio.gather(
            self._events.list_by_scope(session_id),
            self.get_current_checksum(session_id, definition),
            self._snapshots.latest(session_id),
            self._snapshots.list_by_scope(session_id),
        )
        return StatusSummary(
            session_id=session_id,
            pipeline_type=definition.type,
            events=[e for e in events if e.pipeline_type == definition.type],
            current_checksum=current,
            latest_snapshot=latest,
            registry_history=[h for h in history if h.pipeline_type == definition.type],
        )

    async def generate_issue_report(
        self, session_id: str, definition: PipelineDefinition
    ) -> IssueReport:
        """Debug report listing failed and missing steps with history."""
        summary = await self.get_status_summary(session_id, definition)
        ordered = order_events(summary.events)
        failed = failed_steps(ordered)

        return IssueReport(
            session_id=session_id,
            pipeline_type=definition.type,
            is_valid=summary.current_checksum.is_valid,
            failed_steps=list(dict.fromkeys(e.step for e in ordered if e.step in failed)),
            missing_steps=missing_required_steps(definition, ordered),
            events=summary.events,
            checksum_history=summary.registry_history,
            report_generated_at=datetime.now(timezone.utc),
        )

    # --- Cleanup ---

    async def clear(self) -> None:
        """Drop all events, snapshots and known session ids."""
        await asyncio.gather(self._events.clear(), self._snapshots.clear())
        self._sessions.reset()


def create_tracker(
    settings: Settings | None = None,
    session_registry: SessionRegistry | None = None,
) -> PipelineTracker:
    """Build a tracker wired to the configured storage backend."""
    from checkout_ledger.storage.store_factory import (
        create_event_store,
        create_snapshot_store,
    )

    return PipelineTracker(
        event_store=create_event_store(settings),
        snapshot_store=create_snapshot_store(settings),
        auto_snapshot=True if settings is None else settings.auto_snapshot,
        session_registry=session_registry,
    )
