"""Tests for the document store backends and their record locks."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import LockError

from exchange_negotiation.clients.document_store import (
    InMemoryDocumentStore,
    RedisDocumentStore,
    create_document_store,
)
from exchange_negotiation.config import StorageConfig
from exchange_negotiation.primitives.errors import Conflict


class TestInMemoryDocumentStore:
    @pytest.mark.asyncio
    async def test_put_get_delete(self):
        store = InMemoryDocumentStore()
        await store.put("things", "t-1", {"id": "t-1", "name": "one"})
        assert await store.get("things", "t-1") == {"id": "t-1", "name": "one"}

        await store.delete("things", "t-1")
        assert await store.get("things", "t-1") is None
        assert await store.get("missing", "t-1") is None

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        store = InMemoryDocumentStore()
        document = {"id": "t-1", "tags": ["a"]}
        await store.put("things", "t-1", document)
        document["tags"].append("b")

        loaded = await store.get("things", "t-1")
        loaded["tags"].append("c")
        assert (await store.get("things", "t-1"))["tags"] == ["a"]

    @pytest.mark.asyncio
    async def test_find_matches_every_criterion(self):
        store = InMemoryDocumentStore()
        await store.put("things", "t-1", {"id": "t-1", "kind": "a", "owner": "x"})
        await store.put("things", "t-2", {"id": "t-2", "kind": "a", "owner": "y"})

        assert [d["id"] for d in await store.find("things", kind="a")] == ["t-1", "t-2"]
        assert (await store.find_one("things", kind="a", owner="y"))["id"] == "t-2"
        assert await store.find_one("things", kind="b") is None

    @pytest.mark.asyncio
    async def test_lock_serialises_read_modify_write(self):
        store = InMemoryDocumentStore()
        await store.put("counters", "c", {"value": 0})

        async def _increment() -> None:
            async with store.lock("counters:c"):
                doc = await store.get("counters", "c")
                await asyncio.sleep(0)
                doc["value"] += 1
                await store.put("counters", "c", doc)

        await asyncio.gather(*(_increment() for _ in range(10)))
        assert (await store.get("counters", "c"))["value"] == 10

    @pytest.mark.asyncio
    async def test_released_locks_are_evicted(self):
        store = InMemoryDocumentStore()

        async def _hold(key: str) -> None:
            async with store.lock(key):
                await asyncio.sleep(0)

        await asyncio.gather(*(_hold(f"things:t-{i % 3}") for i in range(9)))

        assert store._locks == {}
        assert store._holders == {}

    @pytest.mark.asyncio
    async def test_lock_survives_while_a_waiter_is_queued(self):
        store = InMemoryDocumentStore()
        order: list[str] = []

        async def _first() -> None:
            async with store.lock("k"):
                await asyncio.sleep(0.01)
                order.append("first")

        async def _second() -> None:
            await asyncio.sleep(0)
            async with store.lock("k"):
                order.append("second")

        await asyncio.gather(_first(), _second())
        assert order == ["first", "second"]
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_health(self):
        assert (await InMemoryDocumentStore().health_check())["status"] == "connected"


def _redis_with_lock(acquired: bool = True, release_error: Exception | None = None):
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=acquired)
    lock.release = AsyncMock(side_effect=release_error)
    lock.reacquire = AsyncMock()
    redis = MagicMock()
    redis.lock = MagicMock(return_value=lock)
    return redis, lock


class TestRedisDocumentStore:
    @pytest.mark.asyncio
    async def test_collections_are_hashes(self):
        redis = MagicMock()
        redis.hget = AsyncMock(return_value={"id": "t-1"})
        redis.hset = AsyncMock()
        redis.hgetall = AsyncMock(return_value={"t-1": {"id": "t-1"}})
        store = RedisDocumentStore(redis, StorageConfig())

        await store.put("things", "t-1", {"id": "t-1"})
        assert await store.get("things", "t-1") == {"id": "t-1"}
        assert await store.all("things") == [{"id": "t-1"}]

        redis.hset.assert_awaited_once_with("docs:things", "t-1", {"id": "t-1"})
        redis.hget.assert_awaited_once_with("docs:things", "t-1")

    @pytest.mark.asyncio
    async def test_lock_uses_configured_timeouts(self):
        redis, lock = _redis_with_lock()
        store = RedisDocumentStore(redis, StorageConfig(lock_timeout_s=5, lock_blocking_timeout_s=1))

        async with store.lock("things:t-1"):
            pass

        redis.lock.assert_called_once_with("things:t-1", timeout=5, blocking_timeout=1)
        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lock_not_acquired_is_a_conflict(self):
        redis, lock = _redis_with_lock(acquired=False)
        store = RedisDocumentStore(redis, StorageConfig())

        with pytest.raises(Conflict):
            async with store.lock("things:t-1"):
                pass
        lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_lost_before_release_is_a_conflict(self):
        redis, _ = _redis_with_lock(release_error=LockError("expired"))
        store = RedisDocumentStore(redis, StorageConfig())

        with pytest.raises(Conflict) as exc_info:
            async with store.lock("things:t-1"):
                pass
        assert "expired" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_lost_lock_does_not_mask_the_original_error(self):
        redis, _ = _redis_with_lock(release_error=LockError("expired"))
        store = RedisDocumentStore(redis, StorageConfig())

        with pytest.raises(KeyError):
            async with store.lock("things:t-1"):
                raise KeyError("boom")

    @pytest.mark.asyncio
    async def test_long_holder_keeps_renewing_the_lock(self):
        redis, lock = _redis_with_lock()
        store = RedisDocumentStore(redis, StorageConfig(lock_timeout_s=0.03))

        async with store.lock("ecosystems:eco-1"):
            await asyncio.sleep(0.1)

        assert lock.reacquire.await_count >= 2
        lock.release.assert_awaited_once()
        await_count = lock.reacquire.await_count
        await asyncio.sleep(0.05)
        assert lock.reacquire.await_count == await_count


class TestFactory:
    def test_memory_backend(self):
        assert isinstance(create_document_store(StorageConfig(backend="memory")), InMemoryDocumentStore)

    def test_redis_backend_requires_client(self):
        with pytest.raises(ValueError):
            create_document_store(StorageConfig(backend="redis"))

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_document_store(StorageConfig(backend="mongo"))
