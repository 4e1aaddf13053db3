# src/pipeline/event.py — v2
"""Event construction and validation.

Generated event ids are composite coordinates:
    {session_id}.{pipeline_type}.{step}.{sequence}.{nonce}

e.g. "chk_001.checkout_physical.payment_confirmed.1.3f9a0c2b7d1e" is the
second attempt of payment_confirmed. The nonce keeps ids unique per physical
record, so a retried network submission of the same step never collides.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from checkout_ledger.pipeline.models import PipelineEvent

_EVENT_ID_RE = re.compile(
    r"^(?P<session_id>[a-zA-Z0-9_-]+)\."
    r"(?P<pipeline_type>[a-zA-Z0-9_-]+)\."
    r"(?P<step>[a-z_]+)\."
    r"(?P<sequence>\d+)"
    r"(?:\.(?P<nonce>[a-f0-9]+))?$"
)
_NONCE_LENGTH = 12
_UNBUILT_ID = "unbuilt"


class EventValidationError(ValueError):
    """Raised when an event violates its type, enum or length constraints.

    Attributes:
        errors: One dict per violated field, with ``field`` and ``message``.
    """

    def __init__(self, errors: list[dict[str, str]]):
        self.errors = errors
        detail = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        super().__init__(f"Invalid pipeline event: {detail}")

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> EventValidationError:
        return cls([
            {
                "field": ".".join(str(p) for p in err["loc"]) or "__root__",
                "message": err["msg"],
            }
            for err in exc.errors()
        ])


@dataclass(frozen=True)
class ParsedEventId:
    """Coordinates recovered from a generated event id."""

    session_id: str
    pipeline_type: str
    step: str
    sequence: int
    nonce: str | None = None


def create_event_id(
    session_id: str,
    pipeline_type: str,
    step: str,
    sequence: int = 0,
) -> str:
    """Build a unique composite event id."""
    nonce = uuid.uuid4().hex[:_NONCE_LENGTH]
    event_id = f"{session_id}.{pipeline_type}.{step}.{sequence}.{nonce}"
    if not _EVENT_ID_RE.match(event_id):
        raise EventValidationError([
            {"field": "id", "message": f"cannot build event id from {event_id!r}"}
        ])
    return event_id


def parse_event_id(event_id: str) -> ParsedEventId:
    """Split a composite event id into its coordinates.

    Raises:
        EventValidationError: If the id is not a composite coordinate.
    """
    match = _EVENT_ID_RE.match(event_id)
    if match is None:
        raise EventValidationError([
            {
                "field": "id",
                "message": "must match {session}.{pipeline}.{step}.{seq}[.{nonce}]",
            }
        ])
    return ParsedEventId(
        session_id=match.group("session_id"),
        pipeline_type=match.group("pipeline_type"),
        step=match.group("step"),
        sequence=int(match.group("sequence")),
        nonce=match.group("nonce"),
    )


def create_event(**fields: Any) -> PipelineEvent:
    """Create a validated PipelineEvent, filling in ``id`` and ``timestamp``.

    Args:
        **fields: PipelineEvent fields. ``id`` and ``timestamp`` are generated
            when absent; ``sequence`` defaults to 0.

    Returns:
        Frozen, validated PipelineEvent.

    Raises:
        EventValidationError: If any field violates its constraints.
    """
    data = dict(fields)
    data.setdefault("sequence", 0)
    if data.get("timestamp") is None:
        data["timestamp"] = datetime.now(timezone.utc)
    if not data.get("id"):
        if not _has_coordinates(data):
            # Report the offending fields rather than the absent id.
            validate_event({**data, "id": _UNBUILT_ID})
            raise EventValidationError([
                {
                    "field": "id",
                    "message": "cannot build an event id: session_id and "
                    "pipeline_type must be URL-safe (alphanumeric, _, -)",
                }
            ])
        data["id"] = create_event_id(
            session_id=data["session_id"],
            pipeline_type=data["pipeline_type"],
            step=data["step"],
            sequence=data["sequence"],
        )
    return validate_event(data)


def validate_event(event: PipelineEvent | Mapping[str, Any]) -> PipelineEvent:
    """Re-validate an event or a raw mapping (e.g. decoded JSON).

    Raises:
        EventValidationError: If the payload is not a valid event.
    """
    payload = event.model_dump() if isinstance(event, PipelineEvent) else dict(event)
    try:
        return PipelineEvent.model_validate(payload)
    except PydanticValidationError as exc:
        raise EventValidationError.from_pydantic(exc) from exc


def _has_coordinates(data: Mapping[str, Any]) -> bool:
    """True when the fields needed for a composite id look well-formed."""
    try:
        candidate = (
            f"{data['session_id']}.{data['pipeline_type']}."
            f"{data['step']}.{int(data['sequence'])}"
        )
    except (KeyError, TypeError, ValueError):
        return False
    return _EVENT_ID_RE.match(candidate) is not None
