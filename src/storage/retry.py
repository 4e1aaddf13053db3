# src/storage/retry.py — v1
"""Bounded retry with exponential backoff around remote storage calls.

Only transient errors (connection drops, timeouts, a server still loading
its dataset) are retried. Everything else propagates unmodified.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageRetryExhausted(Exception):
    """All retries exhausted for a storage operation."""

    def __init__(self, operation: str, error_type: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.error_type = error_type
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Storage operation '{operation}' failed after {attempts} attempts "
            f"({error_type}): {last_error}"
        )


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for transient storage errors."""

    max_retries: int = 3
    base_delay_s: float = 0.2
    backoff_factor: float = 2.0
    jitter: bool = True


DEFAULT_RETRY_CONFIG = RetryConfig()

_RETRYABLE = frozenset({"connection", "timeout", "busy"})


def classify_error(error: Exception) -> str:
    """Classify an exception into a storage error type."""
    name = type(error).__name__.lower()
    msg = str(error).lower()

    if isinstance(error, TimeoutError) or "timeout" in name or "timed out" in msg:
        return "timeout"
    if isinstance(error, ConnectionError) or "connection" in name:
        return "connection"
    if "busyloading" in name or "loading the dataset" in msg:
        return "busy"
    return "fatal"


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Compute delay for a given attempt (0-based)."""
    delay = config.base_delay_s * (config.backoff_factor ** attempt)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def with_retry(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    operation: str = "unknown",
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> T:
    """Execute an async storage call with retry on transient errors.

    Raises:
        StorageRetryExhausted: If a transient error persists past max_retries.
        Exception: Any non-transient error, unmodified.
    """
    policy = config or DEFAULT_RETRY_CONFIG
    attempts = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            error_type = classify_error(e)
            if error_type not in _RETRYABLE:
                raise
            attempts += 1
            if attempts > policy.max_retries:
                raise StorageRetryExhausted(operation, error_type, attempts, e) from e

            delay = compute_delay(policy, attempts - 1)
            logger.warning(
                "Storage '%s' - %s (attempt %d/%d), retrying in %.2fs",
                operation, error_type, attempts, policy.max_retries, delay,
            )
            await asyncio.sleep(delay)
