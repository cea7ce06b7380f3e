import hashlib
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import delete, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from collabcore.core.db import create_db_engine, create_session_factory
from collabcore.core.exceptions import StorageError
from collabcore.db.base import Base
from collabcore.db.models.record import CollaborationRecord
from collabcore.infrastructure.storage.base import (
    CollaborationStorage, LocalLockRegistry, StorageBatch, decode_value, encode_value
)

logger = logging.getLogger(__name__)


def advisory_lock_key(name: str) -> int:
    """Стабильный 64-битный ключ для pg_advisory_lock"""
    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class SQLStorage(CollaborationStorage):
    """Хранилище поверх одной key-value таблицы SQLAlchemy.

    На PostgreSQL документ блокируется через pg_advisory_lock, поэтому
    несколько процессов с одной базой работают последовательно. Другие
    диалекты (SQLite) блокируют только внутри процесса.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        self._locks = LocalLockRegistry()

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> "SQLStorage":
        return cls(create_db_engine(database_url, echo=echo))

    async def init(self) -> None:
        """Создание таблицы записей"""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError("Failed to initialize SQL storage") from e
        logger.info(f"SQL storage ready at {self.engine.url.render_as_string(hide_password=True)}")

    async def close(self) -> None:
        await self.engine.dispose()

    async def get(self, key: str) -> Optional[Any]:
        try:
            async with self.session_factory() as session:
                record = await session.get(CollaborationRecord, key)
                raw = record.value if record else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read key '{key}'") from e

        if raw is None:
            return None
        return decode_value(key, raw)

    async def commit(self, batch: StorageBatch) -> None:
        if batch.is_empty:
            return

        encoded = {key: encode_value(key, value) for key, value in batch.puts.items()}

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    if batch.deletes:
                        await session.execute(
                            delete(CollaborationRecord).where(
                                CollaborationRecord.key.in_(list(batch.deletes))
                            )
                        )
                    for key, value in encoded.items():
                        await session.merge(CollaborationRecord(key=key, value=value))
        except SQLAlchemyError as e:
            raise StorageError("Failed to commit storage batch") from e

    @property
    def uses_advisory_locks(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    @asynccontextmanager
    async def lock(self, name: str) -> AsyncIterator[None]:
        # Локальная блокировка сначала, чтобы не держать лишние соединения
        async with self._locks.hold(name):
            if not self.uses_advisory_locks:
                yield
                return

            key = advisory_lock_key(name)
            try:
                conn = await self.engine.connect()
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to acquire lock '{name}'") from e

            try:
                await conn.execute(text("SELECT pg_advisory_lock(:key)"), {"key": key})
            except SQLAlchemyError as e:
                await conn.close()
                raise StorageError(f"Failed to acquire lock '{name}'") from e

            try:
                yield
            finally:
                try:
                    await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
                except SQLAlchemyError:
                    # Блокировка сессии снимается только вместе с соединением
                    logger.warning(f"[SQL] Failed to release lock '{name}', dropping connection")
                    await conn.invalidate()
                finally:
                    await conn.close()
