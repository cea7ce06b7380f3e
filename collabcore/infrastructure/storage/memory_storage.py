from typing import Any, Dict, Optional

from collabcore.infrastructure.storage.base import (
    CollaborationStorage, LocalLockRegistry, StorageBatch, decode_value, encode_value
)


class InMemoryStorage(CollaborationStorage):
    """Хранилище в памяти процесса (разработка и тесты)"""

    def __init__(self):
        # Значения храним сериализованными, чтобы вызывающий код не разделял ссылки
        self._records: Dict[str, str] = {}
        self._locks = LocalLockRegistry()

    async def get(self, key: str) -> Optional[Any]:
        raw = self._records.get(key)
        if raw is None:
            return None
        return decode_value(key, raw)

    async def commit(self, batch: StorageBatch) -> None:
        # Сначала сериализуем все, чтобы ошибка не оставила частичных изменений
        encoded = {key: encode_value(key, value) for key, value in batch.puts.items()}
        for key in batch.deletes:
            self._records.pop(key, None)
        self._records.update(encoded)

    def lock(self, name: str):
        return self._locks.hold(name)

    def keys(self):
        return list(self._records.keys())

    def __len__(self) -> int:
        return len(self._records)
