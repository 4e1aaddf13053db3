# src/storage/redis_store.py — v2
"""Redis-based event and snapshot stores (EVENT_STORE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for multi-instance deployments.

Key layout (prefix defaults to "checkout_ledger:pipeline"):
    {prefix}:events:{session_id}          list, RPUSH, JSON events (oldest first)
    {prefix}:registry:{session_id}        list, LPUSH, JSON snapshots (newest first)
    {prefix}:index:event-sessions         set of session ids with events
    {prefix}:index:registry-sessions      set of session ids with snapshots

Every call goes through the bounded retry policy. An RPUSH retried after a
dropped connection may land twice; the chain engine collapses repeated ids.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from checkout_ledger.pipeline.models import ChecksumRegistryEntry, PipelineEvent
from checkout_ledger.storage.base_store import BaseEventStore, BaseSnapshotStore
from checkout_ledger.storage.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "checkout_ledger:pipeline"


class _RedisStoreBase:
    """Connection handling shared by the Redis stores."""

    def __init__(
        self,
        redis_url: str = "",
        key_prefix: str = DEFAULT_KEY_PREFIX,
        retry_config: RetryConfig | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            try:
                import redis
            except ImportError as e:
                raise ImportError(
                    "redis package required: pip install redis"
                ) from e
            if not redis_url:
                raise ValueError("redis_url is required when no client is given")
            client = redis.Redis.from_url(redis_url, decode_responses=True)

        self._client = client
        self._prefix = key_prefix.rstrip(":")
        self._retry = retry_config

    def _key(self, *parts: str) -> str:
        return ":".join((self._prefix, *parts))

    async def _call(self, operation: str, method: str, *args: Any) -> Any:
        async def _invoke() -> Any:
            return getattr(self._client, method)(*args)

        return await with_retry(_invoke, operation=operation, config=self._retry)

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()


class RedisEventStore(_RedisStoreBase, BaseEventStore):
    """Redis-backed event store."""

    async def store(self, event: PipelineEvent) -> None:
        await self._call(
            "events.store", "rpush",
            self._key("events", event.session_id), event.model_dump_json(),
        )
        await self._call(
            "events.store", "sadd",
            self._key("index", "event-sessions"), event.session_id,
        )

    async def list_by_scope(self, session_id: str) -> list[PipelineEvent]:
        raw = await self._call(
            "events.list", "lrange", self._key("events", session_id), 0, -1,
        )
        return _decode_all(raw, PipelineEvent, session_id)

    async def list_sessions(self) -> list[str]:
        members = await self._call(
            "events.sessions", "smembers", self._key("index", "event-sessions"),
        )
        return sorted(members)

    async def clear(self) -> None:
        index_key = self._key("index", "event-sessions")
        sessions = await self._call("events.clear", "smembers", index_key)
        keys = [self._key("events", sid) for sid in sessions]
        if keys:
            await self._call("events.clear", "delete", *keys)
        await self._call("events.clear", "delete", index_key)


class RedisSnapshotStore(_RedisStoreBase, BaseSnapshotStore):
    """Redis-backed checksum registry."""

    async def store(self, entry: ChecksumRegistryEntry) -> None:
        await self._call(
            "registry.store", "lpush",
            self._key("registry", entry.session_id), entry.model_dump_json(),
        )
        await self._call(
            "registry.store", "sadd",
            self._key("index", "registry-sessions"), entry.session_id,
        )

    async def list_by_scope(self, session_id: str) -> list[ChecksumRegistryEntry]:
        raw = await self._call(
            "registry.list", "lrange", self._key("registry", session_id), 0, -1,
        )
        return _decode_all(raw, ChecksumRegistryEntry, session_id)

    async def latest(self, session_id: str) -> ChecksumRegistryEntry | None:
        raw = await self._call(
            "registry.latest", "lindex", self._key("registry", session_id), 0,
        )
        if raw is None:
            return None
        decoded = _decode_all([raw], ChecksumRegistryEntry, session_id)
        if decoded:
            return decoded[0]
        # Newest entry is corrupt; fall back to the newest readable one.
        entries = await self.list_by_scope(session_id)
        return entries[0] if entries else None

    async def clear(self) -> None:
        index_key = self._key("index", "registry-sessions")
        sessions = await self._call("registry.clear", "smembers", index_key)
        keys = [self._key("registry", sid) for sid in sessions]
        if keys:
            await self._call("registry.clear", "delete", *keys)
        await self._call("registry.clear", "delete", index_key)


def _decode_all(raw_values: list[str], model: type, session_id: str) -> list[Any]:
    """Decode JSON values, skipping (and logging) undecodable ones."""
    decoded: list[Any] = []
    for raw in raw_values:
        try:
            decoded.append(model.model_validate_json(raw))
        except (ValidationError, ValueError) as e:
            logger.warning(
                "Skipping undecodable %s for session %s: %s",
                model.__name__, session_id, e,
            )
    return decoded
