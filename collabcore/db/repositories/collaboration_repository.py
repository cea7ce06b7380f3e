from typing import Any, Callable, Dict, List, Optional, TypeVar

from collabcore.core.exceptions import CorruptRecordError
from collabcore.domains.collaboration.entities import Activity, Comment, ShareLink
from collabcore.infrastructure.storage.base import CollaborationStorage, StorageBatch

T = TypeVar("T")

COMMENTS_KEY = "comments:{document_id}"
COMMENT_REF_KEY = "comment_ref:{comment_id}"
SHARE_LINKS_KEY = "share_links:{document_id}"
SHARE_LINK_REF_KEY = "share_link_ref:{link_id}"
SHARE_TOKEN_KEY = "share_token:{token}"
ACTIVITY_KEY = "activity:{document_id}"


def _load_list(key: str, records: Any, from_dict: Callable[[Dict[str, Any]], T]) -> List[T]:
    """Преобразование сохраненного списка записей в доменные сущности"""
    if records is None:
        return []
    if not isinstance(records, list):
        raise CorruptRecordError(key, "expected a list of records")
    try:
        return [from_dict(record) for record in records]
    except (KeyError, TypeError, ValueError) as e:
        raise CorruptRecordError(key, str(e)) from e


def _load_document_ref(key: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CorruptRecordError(key, "expected a document id")
    return value


class CommentRepository:
    """Репозиторий для работы с комментариями"""

    def __init__(self, storage: CollaborationStorage):
        self.storage = storage

    async def get_by_document(self, document_id: str) -> List[Comment]:
        """Плоский список комментариев документа"""
        key = COMMENTS_KEY.format(document_id=document_id)
        return _load_list(key, await self.storage.get(key), Comment.from_dict)

    async def get_document_id(self, comment_id: str) -> Optional[str]:
        """Документ, которому принадлежит комментарий"""
        key = COMMENT_REF_KEY.format(comment_id=comment_id)
        return _load_document_ref(key, await self.storage.get(key))

    def stage_document(self, batch: StorageBatch, document_id: str, comments: List[Comment]) -> None:
        batch.put(
            COMMENTS_KEY.format(document_id=document_id),
            [comment.to_dict() for comment in comments]
        )

    def stage_reference(self, batch: StorageBatch, comment_id: str, document_id: str) -> None:
        batch.put(COMMENT_REF_KEY.format(comment_id=comment_id), document_id)

    def stage_reference_removal(self, batch: StorageBatch, comment_id: str) -> None:
        batch.delete(COMMENT_REF_KEY.format(comment_id=comment_id))


class ShareLinkRepository:
    """Репозиторий для работы со ссылками доступа"""

    def __init__(self, storage: CollaborationStorage):
        self.storage = storage

    async def get_by_document(self, document_id: str) -> List[ShareLink]:
        key = SHARE_LINKS_KEY.format(document_id=document_id)
        return _load_list(key, await self.storage.get(key), ShareLink.from_dict)

    async def get_document_id(self, link_id: str) -> Optional[str]:
        key = SHARE_LINK_REF_KEY.format(link_id=link_id)
        return _load_document_ref(key, await self.storage.get(key))

    async def find_token(self, token: str) -> Optional[Dict[str, str]]:
        """Поиск по глобальному индексу токенов"""
        key = SHARE_TOKEN_KEY.format(token=token)
        value = await self.storage.get(key)
        if value is None:
            return None
        if not isinstance(value, dict) or "document_id" not in value or "link_id" not in value:
            raise CorruptRecordError(key, "expected a token index entry")
        return value

    def stage_document(self, batch: StorageBatch, document_id: str, links: List[ShareLink]) -> None:
        batch.put(
            SHARE_LINKS_KEY.format(document_id=document_id),
            [link.to_dict() for link in links]
        )

    def stage_link_indexes(self, batch: StorageBatch, link: ShareLink) -> None:
        batch.put(SHARE_LINK_REF_KEY.format(link_id=link.id), link.document_id)
        batch.put(
            SHARE_TOKEN_KEY.format(token=link.token),
            {"document_id": link.document_id, "link_id": link.id}
        )

    def stage_link_indexes_removal(self, batch: StorageBatch, link: ShareLink) -> None:
        batch.delete(SHARE_LINK_REF_KEY.format(link_id=link.id))
        batch.delete(SHARE_TOKEN_KEY.format(token=link.token))


class ActivityRepository:
    """Репозиторий журнала активности"""

    def __init__(self, storage: CollaborationStorage):
        self.storage = storage

    async def get_by_document(self, document_id: str) -> List[Activity]:
        key = ACTIVITY_KEY.format(document_id=document_id)
        return _load_list(key, await self.storage.get(key), Activity.from_dict)

    def stage_document(self, batch: StorageBatch, document_id: str, entries: List[Activity]) -> None:
        batch.put(
            ACTIVITY_KEY.format(document_id=document_id),
            [entry.to_dict() for entry in entries]
        )
