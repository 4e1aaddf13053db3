# src/storage/memory_store.py — v1
"""In-memory event and snapshot stores (EVENT_STORE_BACKEND=memory).

Suitable for development and tests. Each session gets its own append-only
list; a lock guards the shared dict so parallel writers from several threads
never lose an append.
"""

from __future__ import annotations

import threading
from collections import defaultdict

from checkout_ledger.pipeline.models import ChecksumRegistryEntry, PipelineEvent
from checkout_ledger.storage.base_store import BaseEventStore, BaseSnapshotStore


class InMemoryEventStore(BaseEventStore):
    """Process-local event store preserving insertion order per session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: defaultdict[str, list[PipelineEvent]] = defaultdict(list)

    async def store(self, event: PipelineEvent) -> None:
        with self._lock:
            self._events[event.session_id].append(event)

    async def list_by_scope(self, session_id: str) -> list[PipelineEvent]:
        with self._lock:
            return list(self._events.get(session_id, ()))

    async def list_sessions(self) -> list[str]:
        with self._lock:
            return [sid for sid, events in self._events.items() if events]

    async def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(events) for events in self._events.values())


class InMemorySnapshotStore(BaseSnapshotStore):
    """Process-local checksum registry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: defaultdict[str, list[ChecksumRegistryEntry]] = defaultdict(list)

    async def store(self, entry: ChecksumRegistryEntry) -> None:
        with self._lock:
            self._entries[entry.session_id].append(entry)

    async def list_by_scope(self, session_id: str) -> list[ChecksumRegistryEntry]:
        # Append order is authoritative; created_at may tie within a clock tick.
        with self._lock:
            return list(reversed(self._entries.get(session_id, ())))

    async def latest(self, session_id: str) -> ChecksumRegistryEntry | None:
        with self._lock:
            entries = self._entries.get(session_id)
            return entries[-1] if entries else None

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()
