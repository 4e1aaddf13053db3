# src/tracking/handler_health.py — v1
"""Per-handler aggregation of pipeline events.

Groups events by the integration that executed them and derives success and
error rates, latency figures and a coarse health status. Read-only: nothing
here touches storage.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

from checkout_ledger.pipeline.models import PipelineEvent
from checkout_ledger.tracking.models import HandlerError, HandlerHealth, HandlerHealthStatus

DEFAULT_WINDOW = timedelta(hours=1)
DEFAULT_HEALTHY_THRESHOLD = 95.0
DEFAULT_DEGRADED_THRESHOLD = 50.0


def aggregate_by_handler(
    events: Iterable[PipelineEvent],
    now: datetime | None = None,
    window: timedelta = DEFAULT_WINDOW,
    healthy_threshold: float = DEFAULT_HEALTHY_THRESHOLD,
    degraded_threshold: float = DEFAULT_DEGRADED_THRESHOLD,
) -> dict[str, HandlerHealth]:
    """Aggregate events into per-handler health.

    Events without a handler are ignored.

    Returns:
        Dict mapping handler name to HandlerHealth, sorted by handler name.
    """
    grouped: dict[str, list[PipelineEvent]] = defaultdict(list)
    for event in events:
        if event.handler:
            grouped[event.handler].append(event)

    return {
        handler: compute_handler_health(
            handler,
            grouped[handler],
            now=now,
            window=window,
            healthy_threshold=healthy_threshold,
            degraded_threshold=degraded_threshold,
        )
        for handler in sorted(grouped)
    }


def compute_handler_health(
    handler: str,
    events: Sequence[PipelineEvent],
    now: datetime | None = None,
    window: timedelta = DEFAULT_WINDOW,
    healthy_threshold: float = DEFAULT_HEALTHY_THRESHOLD,
    degraded_threshold: float = DEFAULT_DEGRADED_THRESHOLD,
) -> HandlerHealth:
    """Health summary for one handler's events.

    Latency figures only use events that report ``duration_ms`` and are
    None when there are no samples.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    total = len(events)
    successes = [e for e in events if e.status == "success"]
    failures = [e for e in events if e.status == "failure"]
    latencies = [e.duration_ms for e in events if e.duration_ms is not None]

    success_rate = _rate(len(successes), total)
    status = _status(
        events, success_rate, now, window, healthy_threshold, degraded_threshold
    )

    return HandlerHealth(
        handler=handler,
        total_calls=total,
        success_count=len(successes),
        failure_count=len(failures),
        success_rate=success_rate,
        error_rate=_rate(len(failures), total),
        latency_samples=len(latencies),
        avg_latency_ms=round(sum(latencies) / len(latencies), 1) if latencies else None,
        p95_latency_ms=_percentile(latencies, 0.95),
        last_call_at=_latest(events),
        last_success_at=_latest(successes),
        last_failure_at=_latest(failures),
        last_error=_last_error(failures),
        status=status,
    )


def _rate(count: int, total: int) -> float:
    """Percentage rounded to one decimal; 0.0 when there are no calls."""
    if total == 0:
        return 0.0
    return round(count / total * 100.0, 1)


def _percentile(values: list[float], percentile: float) -> float | None:
    """Nearest-rank percentile."""
    if not values:
        return None
    ordered = sorted(values)
    index = math.ceil(percentile * len(ordered)) - 1
    return ordered[min(max(index, 0), len(ordered) - 1)]


def _latest(events: Sequence[PipelineEvent]) -> datetime | None:
    return max((e.timestamp for e in events), default=None)


def _last_error(failures: Sequence[PipelineEvent]) -> HandlerError | None:
    if not failures:
        return None
    latest = max(failures, key=lambda e: (e.timestamp, e.id))
    metadata = latest.metadata or {}
    code = metadata.get("error_code") or metadata.get("code") or "unknown"
    message = latest.error or metadata.get("error_message") or "Unknown error"
    return HandlerError(code=str(code), message=str(message))


def _status(
    events: Sequence[PipelineEvent],
    success_rate: float,
    now: datetime,
    window: timedelta,
    healthy_threshold: float,
    degraded_threshold: float,
) -> HandlerHealthStatus:
    if not events:
        return "down"
    if not any(now - e.timestamp <= window for e in events):
        return "down"
    if success_rate > healthy_threshold:
        return "healthy"
    if success_rate >= degraded_threshold:
        return "degraded"
    return "down"
