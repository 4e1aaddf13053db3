# src/pipeline/traced_step.py — v1
"""Traced step wrapper — run a unit of work and record it as a PipelineEvent.

Usage:
    result = await traced_step(
        lambda: client.create_charge(payload),
        tracker=tracker,
        session_id="chk_001",
        pipeline_type="checkout_digital",
        step="payment_initiated",
        handler="stripe",
        input=payload,
    )

The work's result (or exception) is passed through untouched. Recording is
best-effort: a failure to build or store the event is logged and never
changes what the caller sees.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from checkout_ledger.logging.context import set_step_context
from checkout_ledger.pipeline.checksum import (
    compute_input_checksum,
    compute_output_checksum,
)
from checkout_ledger.pipeline.event import create_event
from checkout_ledger.pipeline.models import PipelineDefinition
from checkout_ledger.pipeline.tracker import PipelineTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET: Any = object()


async def traced_step(
    work: Callable[[], Awaitable[T]],
    *,
    tracker: PipelineTracker,
    session_id: str,
    pipeline_type: str,
    step: str,
    handler: str,
    input: Any = _UNSET,  # noqa: A002
    sequence: int = 0,
    metadata: dict[str, Any] | None = None,
    definition: PipelineDefinition | None = None,
) -> T:
    """Await ``work()``, time it, and track a success or failure event.

    Args:
        work: Zero-argument coroutine factory performing the step.
        tracker: Tracker receiving the event.
        session_id: Checkout session id.
        pipeline_type: Pipeline type key.
        step: Step name.
        handler: Integration executing the step.
        input: Step input payload; checksummed when given.
        sequence: Retry/attempt number (0 = first attempt).
        metadata: Extra event metadata.
        definition: Definition used for the auto-snapshot.

    Returns:
        Whatever ``work()`` returns.

    Raises:
        Exception: Whatever ``work()`` raises, unchanged.
    """
    set_step_context(step, handler)
    start = time.perf_counter()
    try:
        output = await work()
    except Exception as exc:
        await _record(
            tracker,
            definition,
            session_id=session_id,
            pipeline_type=pipeline_type,
            step=step,
            handler=handler,
            status="failure",
            sequence=sequence,
            input=input,
            duration_ms=_elapsed_ms(start),
            error=str(exc) or type(exc).__name__,
            metadata=metadata,
        )
        raise

    await _record(
        tracker,
        definition,
        session_id=session_id,
        pipeline_type=pipeline_type,
        step=step,
        handler=handler,
        status="success",
        sequence=sequence,
        input=input,
        output=output,
        duration_ms=_elapsed_ms(start),
        metadata=metadata,
    )
    return output


def _elapsed_ms(start: float) -> float:
    return max(0.0, (time.perf_counter() - start) * 1000.0)


async def _record(
    tracker: PipelineTracker,
    definition: PipelineDefinition | None,
    *,
    input: Any,  # noqa: A002
    output: Any = _UNSET,
    **fields: Any,
) -> None:
    try:
        if input is not _UNSET:
            fields["input_checksum"] = compute_input_checksum(input)
        if output is not _UNSET:
            fields["output_checksum"] = compute_output_checksum(output)
        event = create_event(**fields)
        await tracker.track_event(event, definition)
    except Exception as exc:
        logger.warning(
            "Failed to record %s event for step %s (session %s): %s",
            fields.get("status"), fields.get("step"), fields.get("session_id"), exc,
            exc_info=True,
        )
