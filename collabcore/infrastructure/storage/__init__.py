from collabcore.core.config import Settings
from collabcore.infrastructure.storage.base import CollaborationStorage, LocalLockRegistry, StorageBatch
from collabcore.infrastructure.storage.memory_storage import InMemoryStorage


def create_storage(settings: Settings) -> CollaborationStorage:
    """Создание хранилища по настройкам"""
    if settings.storage_backend == "sql":
        from collabcore.infrastructure.storage.sql_storage import SQLStorage

        return SQLStorage.from_url(settings.database_url, echo=settings.debug)

    if settings.storage_backend == "redis":
        from collabcore.infrastructure.storage.redis_storage import RedisStorage

        return RedisStorage.from_url(
            settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            lock_timeout=settings.redis_lock_timeout,
        )

    return InMemoryStorage()


__all__ = [
    "CollaborationStorage",
    "LocalLockRegistry",
    "StorageBatch",
    "InMemoryStorage",
    "create_storage",
]
