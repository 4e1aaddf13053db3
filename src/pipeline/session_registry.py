# src/pipeline/session_registry.py — v1
"""Explicit registry of session ids seen by a tracker.

Owned by the hosting application and handed to the tracker; reset() gives
tests and demos a clean slate without touching module state.
"""

from __future__ import annotations

import threading


class SessionRegistry:
    """Thread-safe, insertion-ordered set of session ids."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session_ids: dict[str, None] = {}

    def register(self, session_id: str) -> bool:
        """Record a session id. Returns True if it was not known before."""
        with self._lock:
            if session_id in self._session_ids:
                return False
            self._session_ids[session_id] = None
            return True

    def session_ids(self) -> list[str]:
        """Known session ids in registration order."""
        with self._lock:
            return list(self._session_ids)

    def reset(self) -> None:
        with self._lock:
            self._session_ids.clear()

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._session_ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._session_ids)
