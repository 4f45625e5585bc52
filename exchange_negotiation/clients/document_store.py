"""
Exchange Negotiation: Document Store

Persistence for negotiation records and the external entities they touch.
Documents are JSON dicts grouped in named collections. Every
read-modify-write in the state machines runs inside ``lock(key)`` so two
request contexts acting on the same record are serialised.

Backends:
  RedisDocumentStore     one Redis hash per collection, Redis locks
  InMemoryDocumentStore  process-local dicts and asyncio locks (dev, tests)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING, Any

import orjson
import structlog
from redis.exceptions import LockError

from exchange_negotiation.primitives.errors import Conflict

if TYPE_CHECKING:
    from exchange_negotiation.clients.redis import RedisClient
    from exchange_negotiation.config import StorageConfig

logger = structlog.get_logger("exchange_negotiation.clients.document_store")


class DocumentStore(ABC):
    """Abstract document store."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None: ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None: ...

    @abstractmethod
    async def all(self, collection: str) -> list[dict[str, Any]]: ...

    @abstractmethod
    def lock(self, key: str) -> Any:
        """Async context manager holding an exclusive lock on ``key``."""

    async def find(self, collection: str, **criteria: Any) -> list[dict[str, Any]]:
        """Documents whose top-level fields equal every criterion."""
        return [
            doc
            for doc in await self.all(collection)
            if all(doc.get(field) == value for field, value in criteria.items())
        ]

    async def find_one(self, collection: str, **criteria: Any) -> dict[str, Any] | None:
        matches = await self.find(collection, **criteria)
        return matches[0] if matches else None

    async def health_check(self) -> dict[str, Any]:
        return {"status": "connected"}

    async def close(self) -> None:
        return None


class RedisDocumentStore(DocumentStore):
    """Collections as Redis hashes keyed by document id."""

    def __init__(self, redis: RedisClient, config: StorageConfig) -> None:
        self._redis = redis
        self._config = config

    @staticmethod
    def _collection_key(collection: str) -> str:
        return f"docs:{collection}"

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await self._redis.hget(self._collection_key(collection), doc_id)

    async def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        await self._redis.hset(self._collection_key(collection), doc_id, document)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._redis.hdel(self._collection_key(collection), doc_id)

    async def all(self, collection: str) -> list[dict[str, Any]]:
        docs = await self._redis.hgetall(self._collection_key(collection))
        return list(docs.values())

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """
        Hold a Redis lock on ``key`` for the whole block.

        The lock TTL is renewed in the background every third of
        ``lock_timeout_s`` so long-running holders (a reconciliation waiting
        on gateway retries) keep ownership. A lock found lost on release is
        a ``Conflict``: another request may have written in between.
        """
        lock = self._redis.lock(
            key,
            timeout=self._config.lock_timeout_s,
            blocking_timeout=self._config.lock_blocking_timeout_s,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning("record_lock_timeout", key=key)
            raise Conflict("Record is being modified by another request, retry later", key=key)

        renewal = asyncio.create_task(self._keep_alive(lock, key))
        try:
            yield
        except BaseException:
            await self._release(lock, key, renewal, strict=False)
            raise
        await self._release(lock, key, renewal, strict=True)

    async def _keep_alive(self, lock: Any, key: str) -> None:
        interval = max(self._config.lock_timeout_s / 3, 0.01)
        while True:
            await asyncio.sleep(interval)
            try:
                await lock.reacquire()
            except LockError:
                logger.error("record_lock_renewal_failed", key=key)
                return

    async def _release(self, lock: Any, key: str, renewal: asyncio.Task[None], strict: bool) -> None:
        renewal.cancel()
        with suppress(asyncio.CancelledError):
            await renewal
        try:
            await lock.release()
        except LockError:
            logger.error("record_lock_lost", key=key)
            if strict:
                raise Conflict(
                    "Record lock expired before the update completed, retry later", key=key
                ) from None

    async def health_check(self) -> dict[str, Any]:
        return await self._redis.health_check()

    async def close(self) -> None:
        await self._redis.close()


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local store. Documents are serialised on write so callers never
    share mutable state with the store, matching the Redis backend.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, bytes]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raw = self._collections.get(collection, {}).get(doc_id)
        return orjson.loads(raw) if raw is not None else None

    async def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = orjson.dumps(document)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._collections.get(collection, {}).pop(doc_id, None)

    async def all(self, collection: str) -> list[dict[str, Any]]:
        return [orjson.loads(raw) for raw in self._collections.get(collection, {}).values()]

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                # Nobody holds or waits on it any more.
                del self._holders[key]
                del self._locks[key]


def create_document_store(config: StorageConfig, redis: RedisClient | None = None) -> DocumentStore:
    """Build the configured backend."""
    if config.backend == "memory":
        return InMemoryDocumentStore()
    if config.backend == "redis":
        if redis is None:
            raise ValueError("Redis backend requires a connected RedisClient")
        return RedisDocumentStore(redis, config)
    raise ValueError(f"Unknown storage backend: {config.backend!r}")
