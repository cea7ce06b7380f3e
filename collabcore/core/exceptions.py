class CollaborationError(Exception):
    """Базовая ошибка модуля совместной работы"""


class CommentValidationError(CollaborationError, ValueError):
    """Некорректные данные комментария (пустой текст, неверный родитель)"""


class StorageError(CollaborationError, RuntimeError):
    """Хранилище недоступно или вернуло поврежденные данные"""


class CorruptRecordError(StorageError):
    """Запись в хранилище не удалось декодировать"""

    def __init__(self, key: str, reason: str = ""):
        self.key = key
        message = f"Corrupt record at key '{key}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ShareLinkValidationError(CollaborationError, ValueError):
    """Некорректные параметры ссылки доступа (срок действия вне диапазона)"""
