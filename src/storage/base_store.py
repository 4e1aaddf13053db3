# src/storage/base_store.py — v1
"""Abstract storage contracts for pipeline events and checksum snapshots.

The tracker receives implementations at construction time and never
branches on the backend type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from checkout_ledger.pipeline.models import ChecksumRegistryEntry, PipelineEvent


class BaseEventStore(ABC):
    """Append-only store of pipeline events, scoped by session id."""

    @abstractmethod
    async def store(self, event: PipelineEvent) -> None:
        """Append an event. Never overwrites an existing record."""

    @abstractmethod
    async def list_by_scope(self, session_id: str) -> list[PipelineEvent]:
        """All events of a session, in insertion order."""

    @abstractmethod
    async def list_sessions(self) -> list[str]:
        """Session ids that have at least one stored event."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every stored event."""


class BaseSnapshotStore(ABC):
    """Append-only store of checksum registry entries, scoped by session id."""

    @abstractmethod
    async def store(self, entry: ChecksumRegistryEntry) -> None:
        """Append a snapshot."""

    @abstractmethod
    async def list_by_scope(self, session_id: str) -> list[ChecksumRegistryEntry]:
        """All snapshots of a session, newest first."""

    @abstractmethod
    async def latest(self, session_id: str) -> ChecksumRegistryEntry | None:
        """Most recently appended snapshot, or None."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every stored snapshot."""
