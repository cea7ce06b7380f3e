import asyncio
import json
import weakref
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Dict, Optional, Set

from collabcore.core.exceptions import CorruptRecordError, StorageError


class StorageBatch:
    """Набор изменений, которые хранилище применяет атомарно"""

    def __init__(self):
        self.puts: Dict[str, Any] = {}
        self.deletes: Set[str] = set()

    def put(self, key: str, value: Any) -> None:
        self.puts[key] = value
        self.deletes.discard(key)

    def delete(self, key: str) -> None:
        self.puts.pop(key, None)
        self.deletes.add(key)

    @property
    def is_empty(self) -> bool:
        return not self.puts and not self.deletes

    def __repr__(self) -> str:
        return f"StorageBatch(puts={sorted(self.puts)}, deletes={sorted(self.deletes)})"


class CollaborationStorage(ABC):
    """Адаптер key-value хранилища.

    Значения - JSON-совместимые структуры. Все изменения одной операции
    передаются одним StorageBatch и применяются целиком или не применяются.
    """

    async def init(self) -> None:
        """Подготовка хранилища (создание таблиц и т.п.)"""

    async def close(self) -> None:
        """Освобождение соединений"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Чтение значения по ключу, None если ключа нет"""

    @abstractmethod
    async def commit(self, batch: StorageBatch) -> None:
        """Атомарное применение пакета изменений"""

    @abstractmethod
    def lock(self, name: str) -> AsyncContextManager[None]:
        """Эксклюзивная блокировка по имени (обычно id документа)"""


class LocalLockRegistry:
    """Блокировки asyncio в пределах процесса"""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        async with lock:
            yield


def encode_value(key: str, value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise StorageError(f"Value for key '{key}' is not JSON serializable") from e


def decode_value(key: str, raw: Any) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CorruptRecordError(key, str(e)) from e
