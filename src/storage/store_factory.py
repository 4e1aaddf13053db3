# src/storage/store_factory.py — v2
"""Factory for event and snapshot store instantiation."""

from __future__ import annotations

from checkout_ledger.config.settings import ConfigurationError, Settings
from checkout_ledger.storage.base_store import BaseEventStore, BaseSnapshotStore
from checkout_ledger.storage.retry import RetryConfig


def retry_config_from_settings(settings: Settings) -> RetryConfig:
    """Build the remote-storage retry policy from settings."""
    return RetryConfig(
        max_retries=settings.storage_max_retries,
        base_delay_s=settings.storage_retry_base_delay_s,
        backoff_factor=settings.storage_retry_backoff_factor,
        jitter=settings.storage_retry_jitter,
    )


def create_event_store(settings: Settings | None = None) -> BaseEventStore:
    """Instantiate the configured event store backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseEventStore implementation.
    """
    backend = "memory" if settings is None else settings.event_store_backend

    if backend == "memory":
        from checkout_ledger.storage.memory_store import InMemoryEventStore
        return InMemoryEventStore()

    if backend == "redis":
        from checkout_ledger.storage.redis_store import RedisEventStore
        if settings is None or not settings.redis_url:
            raise ConfigurationError(
                "REDIS_URL must be set when EVENT_STORE_BACKEND=redis"
            )
        return RedisEventStore(
            redis_url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            retry_config=retry_config_from_settings(settings),
        )

    raise ValueError(f"Unsupported event store backend: {backend!r}")


def create_snapshot_store(settings: Settings | None = None) -> BaseSnapshotStore:
    """Instantiate the checksum registry store on the same backend as events."""
    backend = "memory" if settings is None else settings.event_store_backend

    if backend == "memory":
        from checkout_ledger.storage.memory_store import InMemorySnapshotStore
        return InMemorySnapshotStore()

    if backend == "redis":
        from checkout_ledger.storage.redis_store import RedisSnapshotStore
        if settings is None or not settings.redis_url:
            raise ConfigurationError(
                "REDIS_URL must be set when EVENT_STORE_BACKEND=redis"
            )
        return RedisSnapshotStore(
            redis_url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            retry_config=retry_config_from_settings(settings),
        )

    raise ValueError(f"Unsupported snapshot store backend: {backend!r}")
