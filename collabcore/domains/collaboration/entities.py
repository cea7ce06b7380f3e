import copy
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

# Корневой комментарий + ответы, ответы на ответы запрещены
MAX_THREAD_DEPTH = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Разбор ISO-строки; наивное время считаем UTC"""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class ActivityType(Enum):
    """Типы событий журнала активности"""
    CREATE = "create"
    EDIT = "edit"
    COMMENT = "comment"
    SHARE = "share"
    RESOLVE = "resolve"


class SharePermission(Enum):
    """Уровни доступа по ссылке"""
    VIEW = "view"
    COMMENT = "comment"
    EDIT = "edit"


@dataclass
class Actor:
    """Пользователь, от имени которого выполняется операция"""
    user_id: str
    user_name: str
    avatar: Optional[str] = None


@dataclass
class CommentCount:
    total: int = 0
    resolved: int = 0
    unresolved: int = 0


class CommentSelection:
    """Фрагмент документа, к которому привязан комментарий"""

    def __init__(self, start: int, end: int, anchored_text: str = ""):
        self.start = start
        self.end = end
        self.anchored_text = anchored_text

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "end": self.end, "anchored_text": self.anchored_text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommentSelection":
        return cls(
            start=int(data["start"]),
            end=int(data["end"]),
            anchored_text=data.get("anchored_text", data.get("text", "")),
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, CommentSelection):
            return False
        return (self.start, self.end, self.anchored_text) == (other.start, other.end, other.anchored_text)

    def __repr__(self) -> str:
        return f"CommentSelection({self.start}:{self.end})"


class Comment:
    """Комментарий к документу (корневой или ответ)"""

    def __init__(
        self,
        id: str,
        document_id: str,
        author_id: str,
        author_name: str,
        content: str,
        author_avatar: Optional[str] = None,
        selection: Optional[CommentSelection] = None,
        parent_id: Optional[str] = None,
        mentions: Optional[List[str]] = None,
        resolved: bool = False,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.id = id
        self.document_id = document_id
        self.author_id = author_id
        self.author_name = author_name
        self.author_avatar = author_avatar
        self.content = content
        self.selection = selection
        self.parent_id = parent_id
        self.mentions = list(mentions or [])
        self.resolved = resolved
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at
        # Заполняется только при построении дерева обсуждений
        self.replies: List["Comment"] = []

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def update_content(self, content: str, mentions: List[str], now: datetime) -> None:
        """Изменение текста комментария"""
        self.content = content
        self.mentions = list(mentions)
        self.updated_at = now

    def toggle_resolution(self, now: datetime) -> bool:
        """Переключение состояния обсуждения: открыто/решено"""
        self.resolved = not self.resolved
        self.updated_at = now
        return self.resolved

    @classmethod
    def create_comment(
        cls,
        document_id: str,
        author_id: str,
        author_name: str,
        content: str,
        mentions: List[str],
        created_at: datetime,
        author_avatar: Optional[str] = None,
        selection: Optional[CommentSelection] = None,
        parent_id: Optional[str] = None
    ) -> "Comment":
        """Создание нового комментария"""
        return cls(
            id=str(uuid.uuid4()),
            document_id=document_id,
            author_id=author_id,
            author_name=author_name,
            author_avatar=author_avatar,
            content=content,
            selection=selection,
            parent_id=parent_id,
            mentions=mentions,
            resolved=False,
            created_at=created_at,
            updated_at=created_at
        )

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация комментария в словарь (без ответов)"""
        return {
            "id": self.id,
            "document_id": self.document_id,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "author_avatar": self.author_avatar,
            "content": self.content,
            "selection": self.selection.to_dict() if self.selection else None,
            "parent_id": self.parent_id,
            "mentions": list(self.mentions),
            "resolved": self.resolved,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comment":
        """Десериализация комментария из словаря"""
        selection = data.get("selection")
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            author_id=data["author_id"],
            author_name=data["author_name"],
            author_avatar=data.get("author_avatar"),
            content=data["content"],
            selection=CommentSelection.from_dict(selection) if selection else None,
            parent_id=data.get("parent_id"),
            mentions=data.get("mentions", []),
            resolved=bool(data.get("resolved", False)),
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data.get("updated_at") or data["created_at"])
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Comment):
            return False
        return self.id == other.id

    def __repr__(self) -> str:
        return f"Comment(id={self.id}, document_id={self.document_id}, parent_id={self.parent_id}, resolved={self.resolved})"


class ShareLink:
    """Ссылка доступа к документу"""

    def __init__(
        self,
        id: str,
        document_id: str,
        issuer_id: str,
        token: str,
        permission: SharePermission,
        expires_at: Optional[datetime] = None,
        password_hash: Optional[str] = None,
        created_at: Optional[datetime] = None,
        access_count: int = 0
    ):
        self.id = id
        self.document_id = document_id
        self.issuer_id = issuer_id
        self.token = token
        self.permission = permission
        self.expires_at = expires_at
        self.password_hash = password_hash
        self.created_at = created_at or utcnow()
        self.access_count = access_count

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def is_expired(self, now: datetime) -> bool:
        """Ссылка пригодна только пока now < expires_at"""
        return self.expires_at is not None and not now < self.expires_at

    def register_access(self) -> None:
        """Учет успешного входа по ссылке"""
        self.access_count += 1

    def sanitized(self) -> "ShareLink":
        """Копия без хеша пароля"""
        link = copy.copy(self)
        link.password_hash = None
        return link

    @classmethod
    def create_link(
        cls,
        document_id: str,
        issuer_id: str,
        token: str,
        permission: SharePermission,
        created_at: datetime,
        expires_at: Optional[datetime] = None,
        password_hash: Optional[str] = None
    ) -> "ShareLink":
        """Создание новой ссылки"""
        return cls(
            id=str(uuid.uuid4()),
            document_id=document_id,
            issuer_id=issuer_id,
            token=token,
            permission=permission,
            expires_at=expires_at,
            password_hash=password_hash,
            created_at=created_at,
            access_count=0
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "issuer_id": self.issuer_id,
            "token": self.token,
            "permission": self.permission.value,
            "expires_at": format_datetime(self.expires_at),
            "password_hash": self.password_hash,
            "created_at": format_datetime(self.created_at),
            "access_count": self.access_count
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShareLink":
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            issuer_id=data["issuer_id"],
            token=data["token"],
            permission=SharePermission(data["permission"]),
            expires_at=parse_datetime(data.get("expires_at")),
            password_hash=data.get("password_hash"),
            created_at=parse_datetime(data["created_at"]),
            access_count=int(data.get("access_count", 0))
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, ShareLink):
            return False
        return self.id == other.id

    def __repr__(self) -> str:
        return f"ShareLink(id={self.id}, document_id={self.document_id}, permission={self.permission.value})"


class Activity:
    """Запись журнала активности документа"""

    def __init__(
        self,
        id: str,
        document_id: str,
        actor_id: str,
        actor_name: str,
        type: ActivityType,
        description: str,
        timestamp: Optional[datetime] = None
    ):
        self.id = id
        self.document_id = document_id
        self.actor_id = actor_id
        self.actor_name = actor_name
        self.type = type
        self.description = description
        self.timestamp = timestamp or utcnow()

    @classmethod
    def create_activity(
        cls,
        document_id: str,
        actor_id: str,
        actor_name: str,
        type: ActivityType,
        description: str,
        timestamp: datetime
    ) -> "Activity":
        return cls(
            id=str(uuid.uuid4()),
            document_id=document_id,
            actor_id=actor_id,
            actor_name=actor_name,
            type=type,
            description=description,
            timestamp=timestamp
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "type": self.type.value,
            "description": self.description,
            "timestamp": format_datetime(self.timestamp)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Activity":
        return cls(
            id=data["id"],
            document_id=data["document_id"],
            actor_id=data["actor_id"],
            actor_name=data["actor_name"],
            type=ActivityType(data["type"]),
            description=data["description"],
            timestamp=parse_datetime(data["timestamp"])
        )

    def __repr__(self) -> str:
        return f"Activity({self.type.value}, doc={self.document_id}, actor={self.actor_id})"
