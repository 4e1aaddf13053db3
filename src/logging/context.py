# src/logging/context.py — v2
"""Contextual logging support — attach session_id, pipeline_type, step, handler to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per tracked unit of work.
_session_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)
_pipeline_type: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "pipeline_type", default=None
)
_step: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "step", default=None
)
_handler: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "handler", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    session_id: str | None = None
    pipeline_type: str | None = None
    step: str | None = None
    handler: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        session_id=_session_id.get(),
        pipeline_type=_pipeline_type.get(),
        step=_step.get(),
        handler=_handler.get(),
    )


SessionTokens = tuple[contextvars.Token, contextvars.Token]


def set_session_context(
    session_id: str, pipeline_type: str | None = None
) -> SessionTokens:
    """Set session-level context (called once per tracked event).

    Returns tokens for reset_session_context().
    """
    return _session_id.set(session_id), _pipeline_type.set(pipeline_type)


def reset_session_context(tokens: SessionTokens) -> None:
    """Restore the session-level context in place before set_session_context()."""
    session_token, pipeline_token = tokens
    _pipeline_type.reset(pipeline_token)
    _session_id.reset(session_token)


def set_step_context(step: str, handler: str | None = None) -> None:
    """Set step-level context (called per traced step)."""
    _step.set(step)
    _handler.set(handler)


def clear_context() -> None:
    """Reset all context variables."""
    _session_id.set(None)
    _pipeline_type.set(None)
    _step.set(None)
    _handler.set(None)
