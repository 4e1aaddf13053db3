# tests/unit/storage/test_unit_redis_store.py — v2
"""Tests for storage/redis_store.py — mocked Redis client."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from checkout_ledger.pipeline.models import ChecksumRegistryEntry
from checkout_ledger.storage.retry import RetryConfig, StorageRetryExhausted

_NO_WAIT = RetryConfig(max_retries=2, base_delay_s=0.0, jitter=False)


def _make_entry(**overrides):
    defaults = dict(
        id="reg_chk_001_000000000001",
        session_id="chk_001",
        pipeline_type="checkout_digital",
        chain_hash="b" * 64,
        steps_expected=7,
        steps_completed=1,
        steps_failed=0,
        is_valid=False,
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )
    defaults.update(overrides)
    return ChecksumRegistryEntry(**defaults)


def _mock_redis():
    """MagicMock backed by dicts of lists and sets."""
    lists: defaultdict[str, list[str]] = defaultdict(list)
    sets: defaultdict[str, set[str]] = defaultdict(set)

    def lrange(key, start, end):
        values = lists.get(key, [])
        return list(values[start:] if end == -1 else values[start:end + 1])

    def lindex(key, index):
        values = lists.get(key, [])
        return values[index] if -len(values) <= index < len(values) else None

    def delete(*keys):
        for key in keys:
            lists.pop(key, None)
            sets.pop(key, None)

    mock = MagicMock()
    mock.rpush = lambda k, v: lists[k].append(v)
    mock.lpush = lambda k, v: lists[k].insert(0, v)
    mock.lrange = lrange
    mock.lindex = lindex
    mock.sadd = lambda k, v: sets[k].add(v)
    mock.smembers = lambda k: set(sets.get(k, set()))
    mock.delete = delete
    mock.lists = lists
    return mock


class TestRedisEventStore:
    def test_import_error_without_redis(self):
        """Clear ImportError when redis is not available."""
        import sys
        redis_mod = sys.modules.get("redis")
        sys.modules["redis"] = None  # type: ignore[assignment]
        try:
            from checkout_ledger.storage.redis_store import RedisEventStore
            with pytest.raises(ImportError, match="redis"):
                RedisEventStore(redis_url="redis://localhost")
        finally:
            if redis_mod is not None:
                sys.modules["redis"] = redis_mod
            else:
                sys.modules.pop("redis", None)

    def test_url_required_without_client(self):
        from checkout_ledger.storage.redis_store import RedisEventStore
        with pytest.raises(ValueError, match="redis_url"):
            RedisEventStore(redis_url="")

    @pytest.mark.asyncio
    async def test_store_and_list(self, event_factory):
        from checkout_ledger.storage.redis_store import RedisEventStore

        client = _mock_redis()
        store = RedisEventStore(client=client, key_prefix="test:pipeline")
        first = event_factory("buyer_validated")
        second = event_factory("payment_initiated", offset_s=1)
        await store.store(first)
        await store.store(second)

        assert await store.list_by_scope("chk_001") == [first, second]
        assert "test:pipeline:events:chk_001" in client.lists
        assert await store.list_sessions() == ["chk_001"]

    @pytest.mark.asyncio
    async def test_skips_undecodable_values(self, event_factory):
        from checkout_ledger.storage.redis_store import RedisEventStore

        client = _mock_redis()
        store = RedisEventStore(client=client)
        await store.store(event_factory())
        client.lists["checkout_ledger:pipeline:events:chk_001"].append("{not json")
        assert len(await store.list_by_scope("chk_001")) == 1

    @pytest.mark.asyncio
    async def test_clear(self, event_factory):
        from checkout_ledger.storage.redis_store import RedisEventStore

        client = _mock_redis()
        store = RedisEventStore(client=client)
        await store.store(event_factory(session_id="chk_a"))
        await store.store(event_factory(session_id="chk_b"))
        await store.clear()
        assert await store.list_by_scope("chk_a") == []
        assert await store.list_sessions() == []

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, event_factory):
        from checkout_ledger.storage.redis_store import RedisEventStore

        client = _mock_redis()
        calls = {"n": 0}
        real_rpush = client.rpush

        def flaky_rpush(k, v):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConnectionError("reset by peer")
            return real_rpush(k, v)

        client.rpush = flaky_rpush
        store = RedisEventStore(client=client, retry_config=_NO_WAIT)
        await store.store(event_factory())
        assert calls["n"] == 2
        assert len(await store.list_by_scope("chk_001")) == 1

    @pytest.mark.asyncio
    async def test_persistent_error_exhausts(self, event_factory):
        from checkout_ledger.storage.redis_store import RedisEventStore

        client = _mock_redis()
        client.rpush = MagicMock(side_effect=TimeoutError("timed out"))
        store = RedisEventStore(client=client, retry_config=_NO_WAIT)
        with pytest.raises(StorageRetryExhausted) as exc_info:
            await store.store(event_factory())
        assert exc_info.value.operation == "events.store"
        assert client.rpush.call_count == 3

    def test_close(self):
        from checkout_ledger.storage.redis_store import RedisEventStore

        client = _mock_redis()
        RedisEventStore(client=client).close()
        client.close.assert_called_once()


class TestRedisSnapshotStore:
    @pytest.mark.asyncio
    async def test_newest_first_and_latest(self):
        from checkout_ledger.storage.redis_store import RedisSnapshotStore

        store = RedisSnapshotStore(client=_mock_redis())
        await store.store(_make_entry(id="reg_1"))
        await store.store(_make_entry(id="reg_2"))
        assert [e.id for e in await store.list_by_scope("chk_001")] == ["reg_2", "reg_1"]
        assert (await store.latest("chk_001")).id == "reg_2"

    @pytest.mark.asyncio
    async def test_latest_empty(self):
        from checkout_ledger.storage.redis_store import RedisSnapshotStore

        store = RedisSnapshotStore(client=_mock_redis())
        assert await store.latest("chk_001") is None

    @pytest.mark.asyncio
    async def test_latest_skips_corrupt_newest_entry(self):
        from checkout_ledger.storage.redis_store import RedisSnapshotStore

        client = _mock_redis()
        store = RedisSnapshotStore(client=client)
        await store.store(_make_entry(id="reg_1"))
        client.lpush("checkout_ledger:pipeline:registry:chk_001", "{not json")
        latest = await store.latest("chk_001")
        assert latest is not None
        assert latest.id == "reg_1"

    @pytest.mark.asyncio
    async def test_latest_none_when_all_corrupt(self):
        from checkout_ledger.storage.redis_store import RedisSnapshotStore

        client = _mock_redis()
        store = RedisSnapshotStore(client=client)
        client.lpush("checkout_ledger:pipeline:registry:chk_001", "{not json")
        assert await store.latest("chk_001") is None

    @pytest.mark.asyncio
    async def test_clear(self):
        from checkout_ledger.storage.redis_store import RedisSnapshotStore

        store = RedisSnapshotStore(client=_mock_redis())
        await store.store(_make_entry())
        await store.clear()
        assert await store.list_by_scope("chk_001") == []
