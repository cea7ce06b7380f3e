"""Redis хранилище

Подходит для нескольких воркеров: блокировка документа берется в Redis,
а пакет изменений применяется через MULTI/EXEC.
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from collabcore.core.exceptions import StorageError
from collabcore.infrastructure.storage.base import (
    CollaborationStorage, StorageBatch, decode_value, encode_value
)

logger = logging.getLogger(__name__)


class RedisStorage(CollaborationStorage):
    """Хранилище на Redis"""

    def __init__(self, client: redis.Redis, key_prefix: str = "collab:", lock_timeout: float = 10.0):
        self.client = client
        self.key_prefix = key_prefix
        self.lock_timeout = lock_timeout
        # Блокировки, которые держит текущая задача
        self._held_locks: ContextVar[Tuple] = ContextVar(f"redis_held_locks_{id(self)}", default=())

    @classmethod
    def from_url(cls, redis_url: str, key_prefix: str = "collab:", lock_timeout: float = 10.0) -> "RedisStorage":
        client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        logger.info(f"[Redis] Client created for {redis_url}")
        return cls(client, key_prefix=key_prefix, lock_timeout=lock_timeout)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("[Redis] Connection closed")

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(self._key(key))
        except RedisError as e:
            raise StorageError(f"Failed to read key '{key}'") from e

        if raw is None:
            return None
        return decode_value(key, raw)

    async def commit(self, batch: StorageBatch) -> None:
        if batch.is_empty:
            return

        encoded = {key: encode_value(key, value) for key, value in batch.puts.items()}

        try:
            await self._ensure_leases()
            async with self.client.pipeline(transaction=True) as pipe:
                for key in batch.deletes:
                    pipe.delete(self._key(key))
                for key, value in encoded.items():
                    pipe.set(self._key(key), value)
                await pipe.execute()
        except RedisError as e:
            raise StorageError("Failed to commit storage batch") from e

    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        lock = self.client.lock(self._key(f"lock:{name}"), timeout=self.lock_timeout)
        try:
            await lock.acquire()
        except RedisError as e:
            raise StorageError(f"Failed to acquire lock '{name}'") from e

        held = self._held_locks.set(self._held_locks.get() + (lock,))
        try:
            yield
        finally:
            self._held_locks.reset(held)
            try:
                await lock.release()
            except LockError:
                # Аренда истекла раньше, чем закончилась операция
                logger.warning(f"[Redis] Lock '{name}' expired before release")

    async def _ensure_leases(self) -> None:
        # Без аренды чужой воркер мог уже изменить документ
        for lock in self._held_locks.get():
            if not await lock.owned():
                raise StorageError(f"Lock '{lock.name}' expired before commit")
