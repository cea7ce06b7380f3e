import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, TypeVar, Union

from collabcore.core.config import Settings, get_settings
from collabcore.core.exceptions import CommentValidationError, ShareLinkValidationError, StorageError
from collabcore.core.security import generate_share_token, get_password_hash, verify_password
from collabcore.db.repositories.collaboration_repository import (
    ActivityRepository, CommentRepository, ShareLinkRepository
)
from collabcore.domains.collaboration.entities import (
    Activity, ActivityType, Comment, CommentCount, CommentSelection,
    SharePermission, ShareLink, MAX_THREAD_DEPTH, utcnow
)
from collabcore.domains.collaboration.mentions import extract_mentions
from collabcore.infrastructure.storage.base import CollaborationStorage, StorageBatch

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
T = TypeVar("T")

TOKEN_ATTEMPTS = 5


def time_ago(now: datetime, timestamp: datetime) -> str:
    """Относительное время для ленты: "just now", "5m ago", "2d ago" ..."""
    seconds = int((now - timestamp).total_seconds())

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    if seconds < 2592000:
        return f"{seconds // 86400}d ago"
    if seconds < 31536000:
        return f"{seconds // 2592000}mo ago"
    return f"{seconds // 31536000}y ago"


def _newest_first(items: List[T], key: Callable[[T], datetime]) -> List[T]:
    # При равном времени более поздняя вставка считается более новой
    ordered = sorted(enumerate(items), key=lambda pair: (key(pair[1]), pair[0]), reverse=True)
    return [item for _, item in ordered]


class ActivityLog:
    """Журнал активности документа с ограничением числа записей"""

    def __init__(
        self,
        storage: CollaborationStorage,
        retention: int = 100,
        default_limit: int = 20,
        clock: Clock = utcnow
    ):
        self.storage = storage
        self.repository = ActivityRepository(storage)
        self.retention = retention
        self.default_limit = default_limit
        self.clock = clock

    async def record(
        self,
        document_id: str,
        actor_id: str,
        actor_name: str,
        activity_type: Union[ActivityType, str],
        description: str
    ) -> Activity:
        """Добавление записи отдельной операцией"""
        async with self.storage.lock(document_id):
            batch = StorageBatch()
            activity = await self.append(batch, document_id, actor_id, actor_name, activity_type, description)
            await self.storage.commit(batch)
        return activity

    async def append(
        self,
        batch: StorageBatch,
        document_id: str,
        actor_id: str,
        actor_name: str,
        activity_type: Union[ActivityType, str],
        description: str
    ) -> Activity:
        """Добавление записи в пакет изменений; блокировка документа уже взята"""
        activity = Activity.create_activity(
            document_id=document_id,
            actor_id=actor_id,
            actor_name=actor_name,
            type=ActivityType(activity_type),
            description=description,
            timestamp=self.clock()
        )

        entries = await self.repository.get_by_document(document_id)
        entries.append(activity)
        self.repository.stage_document(batch, document_id, self._prune(entries))
        return activity

    async def list(
        self,
        document_id: str,
        limit: Optional[int] = None,
        activity_type: Optional[Union[ActivityType, str]] = None
    ) -> List[Activity]:
        """Последние записи документа, новые первыми"""
        if limit is None:
            limit = self.default_limit
        if limit <= 0:
            return []

        try:
            entries = await self.repository.get_by_document(document_id)
        except StorageError as e:
            logger.warning(f"[Activity] Failed to read activity for document {document_id}: {e}")
            return []

        if activity_type is not None:
            wanted = ActivityType(activity_type)
            entries = [entry for entry in entries if entry.type == wanted]

        return _newest_first(entries, key=lambda entry: entry.timestamp)[:limit]

    def _prune(self, entries: List[Activity]) -> List[Activity]:
        # Стабильная сортировка: при равном времени сохраняется порядок добавления
        ordered = sorted(entries, key=lambda entry: entry.timestamp)
        return ordered[-self.retention:]


class CommentStore:
    """Комментарии документа: обсуждения, ответы, разрешение"""

    def __init__(self, storage: CollaborationStorage, activity_log: ActivityLog, clock: Clock = utcnow):
        self.storage = storage
        self.repository = CommentRepository(storage)
        self.activity_log = activity_log
        self.clock = clock

    async def add(
        self,
        document_id: str,
        author_id: str,
        author_name: str,
        content: str,
        avatar: Optional[str] = None,
        selection: Optional[Union[CommentSelection, Dict]] = None,
        parent_id: Optional[str] = None
    ) -> Comment:
        """Добавление комментария или ответа"""
        self._validate_content(content)
        if isinstance(selection, dict):
            selection = CommentSelection.from_dict(selection)

        async with self.storage.lock(document_id):
            comments = await self.repository.get_by_document(document_id)
            if parent_id is not None:
                self._validate_parent(comments, parent_id)

            comment = Comment.create_comment(
                document_id=document_id,
                author_id=author_id,
                author_name=author_name,
                author_avatar=avatar,
                content=content,
                selection=selection,
                parent_id=parent_id,
                mentions=extract_mentions(content),
                created_at=self.clock()
            )
            comments.append(comment)

            batch = StorageBatch()
            self.repository.stage_document(batch, document_id, comments)
            self.repository.stage_reference(batch, comment.id, document_id)
            await self.activity_log.append(
                batch,
                document_id,
                author_id,
                author_name,
                ActivityType.COMMENT,
                "Added a reply" if parent_id else "Added a comment"
            )
            await self.storage.commit(batch)

        logger.info(f"[Comments] {author_id} added comment {comment.id} to document {document_id}")
        return comment

    async def list(self, document_id: str, resolved: Optional[bool] = None) -> List[Comment]:
        """Корневые комментарии (новые первыми) с ответами (старые первыми).

        resolved=True/False оставляет только решенные/открытые обсуждения.
        """
        try:
            comments = await self.repository.get_by_document(document_id)
        except StorageError as e:
            logger.warning(f"[Comments] Failed to read comments for document {document_id}: {e}")
            return []

        threads = self._build_threads(comments)
        if resolved is not None:
            threads = [root for root in threads if root.resolved == resolved]
        return threads

    async def update(self, comment_id: str, content: str, actor_id: Optional[str] = None) -> Optional[Comment]:
        """Изменение текста комментария"""
        self._validate_content(content)

        document_id = await self.repository.get_document_id(comment_id)
        if document_id is None:
            return None

        async with self.storage.lock(document_id):
            comments = await self.repository.get_by_document(document_id)
            comment = self._find(comments, comment_id)
            if comment is None:
                return None

            self._check_author(comment, actor_id)
            comment.update_content(content, extract_mentions(content), self.clock())

            batch = StorageBatch()
            self.repository.stage_document(batch, document_id, comments)
            await self.storage.commit(batch)

        return comment

    async def delete(self, comment_id: str, actor_id: Optional[str] = None) -> bool:
        """Удаление комментария вместе с ответами на него"""
        document_id = await self.repository.get_document_id(comment_id)
        if document_id is None:
            return False

        async with self.storage.lock(document_id):
            comments = await self.repository.get_by_document(document_id)
            comment = self._find(comments, comment_id)
            if comment is None:
                return False

            self._check_author(comment, actor_id)

            removed = [c for c in comments if c.id == comment_id or c.parent_id == comment_id]
            remaining = [c for c in comments if c.id != comment_id and c.parent_id != comment_id]

            batch = StorageBatch()
            self.repository.stage_document(batch, document_id, remaining)
            for c in removed:
                self.repository.stage_reference_removal(batch, c.id)
            await self.storage.commit(batch)

        logger.info(f"[Comments] Deleted comment {comment_id} and {len(removed) - 1} replies from document {document_id}")
        return True

    async def toggle_resolution(
        self,
        comment_id: str,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None
    ) -> Optional[bool]:
        """Разрешение/повторное открытие обсуждения"""
        document_id = await self.repository.get_document_id(comment_id)
        if document_id is None:
            return None

        async with self.storage.lock(document_id):
            comments = await self.repository.get_by_document(document_id)
            comment = self._find(comments, comment_id)
            if comment is None:
                return None
            if not comment.is_root:
                raise CommentValidationError("Only root comments can be resolved")

            resolved = comment.toggle_resolution(self.clock())

            batch = StorageBatch()
            self.repository.stage_document(batch, document_id, comments)
            await self.activity_log.append(
                batch,
                document_id,
                actor_id or comment.author_id,
                actor_name or comment.author_name,
                ActivityType.RESOLVE,
                "Resolved a comment" if resolved else "Reopened a comment"
            )
            await self.storage.commit(batch)

        return resolved

    async def count(self, document_id: str) -> CommentCount:
        """Статистика комментариев документа"""
        threads = await self.list(document_id)
        total = sum(1 + len(root.replies) for root in threads)
        resolved = sum(1 for root in threads if root.resolved)
        return CommentCount(total=total, resolved=resolved, unresolved=len(threads) - resolved)

    def _build_threads(self, comments: List[Comment]) -> List[Comment]:
        roots: List[Comment] = []
        replies: Dict[str, List[Comment]] = defaultdict(list)

        for comment in comments:
            if comment.is_root:
                roots.append(comment)
            else:
                replies[comment.parent_id].append(comment)

        for root in roots:
            root.replies = sorted(replies.get(root.id, []), key=lambda c: c.created_at)

        return _newest_first(roots, key=lambda c: c.created_at)

    @staticmethod
    def _find(comments: List[Comment], comment_id: str) -> Optional[Comment]:
        return next((c for c in comments if c.id == comment_id), None)

    def _validate_parent(self, comments: List[Comment], parent_id: str) -> None:
        parent = self._find(comments, parent_id)
        if parent is None:
            raise CommentValidationError("Parent comment not found in this document")
        if self._depth(comments, parent) >= MAX_THREAD_DEPTH:
            raise CommentValidationError("Replies cannot have replies")

    def _depth(self, comments: List[Comment], comment: Comment) -> int:
        # Корневой комментарий на глубине 1
        depth = 1
        while comment.parent_id is not None and depth <= MAX_THREAD_DEPTH:
            parent = self._find(comments, comment.parent_id)
            if parent is None:
                break
            comment = parent
            depth += 1
        return depth

    @staticmethod
    def _validate_content(content: str) -> None:
        if content is None or not content.strip():
            raise CommentValidationError("Comment content cannot be empty")

    @staticmethod
    def _check_author(comment: Comment, actor_id: Optional[str]) -> None:
        if actor_id is not None and actor_id != comment.author_id:
            raise PermissionError("Only the author can modify this comment")


class ShareLinkManager:
    """Выдача и проверка ссылок доступа"""

    def __init__(
        self,
        storage: CollaborationStorage,
        activity_log: ActivityLog,
        clock: Clock = utcnow,
        token_bytes: int = 32,
        frontend_base_url: str = ""
    ):
        self.storage = storage
        self.repository = ShareLinkRepository(storage)
        self.activity_log = activity_log
        self.clock = clock
        self.token_bytes = token_bytes
        self.frontend_base_url = frontend_base_url

    async def create(
        self,
        document_id: str,
        issuer_id: str,
        permission: Union[SharePermission, str],
        expires_in_ms: Optional[int] = None,
        password: Optional[str] = None,
        issuer_name: Optional[str] = None
    ) -> ShareLink:
        """Создание ссылки доступа"""
        permission = SharePermission(permission)
        password_hash = None
        if password:
            password_hash = await asyncio.to_thread(get_password_hash, password)

        async with self.storage.lock(document_id):
            token = await self._generate_unique_token()
            now = self.clock()
            expires_at = None
            if expires_in_ms is not None:
                try:
                    expires_at = now + timedelta(milliseconds=expires_in_ms)
                except OverflowError as e:
                    raise ShareLinkValidationError(f"Expiry of {expires_in_ms} ms is out of range") from e

            link = ShareLink.create_link(
                document_id=document_id,
                issuer_id=issuer_id,
                token=token,
                permission=permission,
                created_at=now,
                expires_at=expires_at,
                password_hash=password_hash
            )

            links = await self.repository.get_by_document(document_id)
            links.append(link)

            batch = StorageBatch()
            self.repository.stage_document(batch, document_id, links)
            self.repository.stage_link_indexes(batch, link)
            await self.activity_log.append(
                batch,
                document_id,
                issuer_id,
                issuer_name or "User",
                ActivityType.SHARE,
                f"Created a {permission.value} link"
            )
            await self.storage.commit(batch)

        logger.info(f"[ShareLink] {issuer_id} created {permission.value} link {link.id} for document {document_id}")
        return link

    async def list(self, document_id: str) -> List[ShareLink]:
        """Ссылки документа, новые первыми"""
        try:
            links = await self.repository.get_by_document(document_id)
        except StorageError as e:
            logger.warning(f"[ShareLink] Failed to read links for document {document_id}: {e}")
            return []

        return _newest_first(links, key=lambda link: link.created_at)

    async def revoke(self, link_id: str) -> bool:
        """Отзыв ссылки"""
        document_id = await self.repository.get_document_id(link_id)
        if document_id is None:
            return False

        async with self.storage.lock(document_id):
            links = await self.repository.get_by_document(document_id)
            link = next((l for l in links if l.id == link_id), None)
            if link is None:
                return False

            batch = StorageBatch()
            self.repository.stage_document(batch, document_id, [l for l in links if l.id != link_id])
            self.repository.stage_link_indexes_removal(batch, link)
            await self.storage.commit(batch)

        logger.info(f"[ShareLink] Revoked link {link_id} for document {document_id}")
        return True

    async def access(self, token: str, password: Optional[str] = None) -> Optional[ShareLink]:
        """Вход по ссылке. Любой отказ возвращает None"""
        if not token:
            return None

        index = await self.repository.find_token(token)
        if index is None:
            logger.debug("[ShareLink] Access denied: unknown token")
            return None

        document_id = index["document_id"]
        async with self.storage.lock(document_id):
            links = await self.repository.get_by_document(document_id)
            link = next((l for l in links if l.token == token), None)
            if link is None:
                logger.debug(f"[ShareLink] Access denied: link for document {document_id} was revoked")
                return None

            if link.is_expired(self.clock()):
                logger.debug(f"[ShareLink] Access denied: link {link.id} expired")
                return None

            if link.has_password:
                matches = await asyncio.to_thread(verify_password, password, link.password_hash)
                if not matches:
                    logger.debug(f"[ShareLink] Access denied: wrong password for link {link.id}")
                    return None

            link.register_access()

            batch = StorageBatch()
            self.repository.stage_document(batch, document_id, links)
            await self.storage.commit(batch)

        return link.sanitized()

    def share_url(self, token: str) -> str:
        """Адрес, который копируется пользователю"""
        return f"{self.frontend_base_url.rstrip('/')}/#/shared/{token}"

    async def _generate_unique_token(self) -> str:
        for _ in range(TOKEN_ATTEMPTS):
            token = generate_share_token(self.token_bytes)
            if await self.repository.find_token(token) is None:
                return token
        raise StorageError("Could not allocate a unique share token")


class CollaborationService:
    """Сервис совместной работы: комментарии, ссылки доступа, журнал активности"""

    def __init__(
        self,
        storage: CollaborationStorage,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow
    ):
        settings = settings or get_settings()
        self.storage = storage
        self.clock = clock
        self.activity_log = ActivityLog(
            storage,
            retention=settings.activity_retention,
            default_limit=settings.activity_default_limit,
            clock=clock
        )
        self.comments = CommentStore(storage, self.activity_log, clock=clock)
        self.share_links = ShareLinkManager(
            storage,
            self.activity_log,
            clock=clock,
            token_bytes=settings.share_token_bytes,
            frontend_base_url=settings.frontend_base_url
        )

    # Комментарии

    async def add_comment(
        self,
        document_id: str,
        user_id: str,
        user_name: str,
        content: str,
        avatar: Optional[str] = None,
        selection: Optional[Union[CommentSelection, Dict]] = None,
        parent_id: Optional[str] = None
    ) -> Comment:
        return await self.comments.add(
            document_id, user_id, user_name, content,
            avatar=avatar, selection=selection, parent_id=parent_id
        )

    async def update_comment(self, comment_id: str, content: str, actor_id: Optional[str] = None) -> Optional[Comment]:
        return await self.comments.update(comment_id, content, actor_id=actor_id)

    async def delete_comment(self, comment_id: str, actor_id: Optional[str] = None) -> bool:
        return await self.comments.delete(comment_id, actor_id=actor_id)

    async def toggle_comment_resolution(
        self,
        comment_id: str,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None
    ) -> Optional[bool]:
        return await self.comments.toggle_resolution(comment_id, actor_id=actor_id, actor_name=actor_name)

    async def get_comments(self, document_id: str, resolved: Optional[bool] = None) -> List[Comment]:
        return await self.comments.list(document_id, resolved=resolved)

    async def get_comment_count(self, document_id: str) -> CommentCount:
        return await self.comments.count(document_id)

    # Ссылки доступа

    async def create_share_link(
        self,
        document_id: str,
        issuer_id: str,
        permission: Union[SharePermission, str],
        expires_in_ms: Optional[int] = None,
        password: Optional[str] = None,
        issuer_name: Optional[str] = None
    ) -> ShareLink:
        return await self.share_links.create(
            document_id, issuer_id, permission,
            expires_in_ms=expires_in_ms, password=password, issuer_name=issuer_name
        )

    async def get_share_links(self, document_id: str) -> List[ShareLink]:
        return await self.share_links.list(document_id)

    async def revoke_share_link(self, link_id: str) -> bool:
        return await self.share_links.revoke(link_id)

    async def access_share_link(self, token: str, password: Optional[str] = None) -> Optional[ShareLink]:
        return await self.share_links.access(token, password)

    def share_url(self, token: str) -> str:
        return self.share_links.share_url(token)

    # Журнал активности

    async def get_activity(
        self,
        document_id: str,
        limit: Optional[int] = None,
        activity_type: Optional[Union[ActivityType, str]] = None
    ) -> List[Activity]:
        return await self.activity_log.list(document_id, limit=limit, activity_type=activity_type)

    async def log_activity(
        self,
        document_id: str,
        user_id: str,
        user_name: str,
        activity_type: Union[ActivityType, str],
        description: str
    ) -> Activity:
        """Запись события от других подсистем (создание, правка документа)"""
        return await self.activity_log.record(document_id, user_id, user_name, activity_type, description)

    def time_ago(self, timestamp: datetime, now: Optional[datetime] = None) -> str:
        return time_ago(now or self.clock(), timestamp)
