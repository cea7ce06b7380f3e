from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List
from datetime import datetime

from collabcore.domains.collaboration.entities import ActivityType, SharePermission

MS_PER_DAY = 24 * 60 * 60 * 1000

# Около 100 лет
MAX_EXPIRES_DAYS = 36500
MAX_EXPIRES_MS = MAX_EXPIRES_DAYS * MS_PER_DAY


class CommentSelectionSchema(BaseModel):
    """Схема выделенного фрагмента документа"""
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)
    anchored_text: str = ""

    @field_validator('end')
    @classmethod
    def validate_selection(cls, v, info):
        values = info.data if hasattr(info, 'data') else {}
        start = values.get('start', 0)
        if v < start:
            raise ValueError('Selection end must be greater or equal to selection start')
        return v

    model_config = ConfigDict(from_attributes=True)


class CommentCreate(BaseModel):
    """Схема для создания комментария"""
    content: str = Field(..., min_length=1)
    selection: Optional[CommentSelectionSchema] = None
    parent_id: Optional[str] = None

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if not v.strip():
            raise ValueError('Comment content cannot be empty')
        return v.strip()


class CommentUpdate(BaseModel):
    """Схема для изменения комментария"""
    content: str = Field(..., min_length=1)

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if not v.strip():
            raise ValueError('Comment content cannot be empty')
        return v.strip()


class CommentResponse(BaseModel):
    """Схема для ответа с данными комментария"""
    id: str
    document_id: str
    author_id: str
    author_name: str
    author_avatar: Optional[str] = None
    content: str
    selection: Optional[CommentSelectionSchema] = None
    parent_id: Optional[str] = None
    mentions: List[str] = []
    resolved: bool
    created_at: datetime
    updated_at: datetime
    replies: List["CommentResponse"] = []

    model_config = ConfigDict(from_attributes=True)


CommentResponse.model_rebuild()


class CommentResolutionResponse(BaseModel):
    comment_id: str
    resolved: bool


class CommentCountResponse(BaseModel):
    """Статистика комментариев документа"""
    total: int
    resolved: int
    unresolved: int

    model_config = ConfigDict(from_attributes=True)


class ShareLinkCreate(BaseModel):
    """Схема для создания ссылки доступа"""
    permission: SharePermission = SharePermission.VIEW
    expires_in_ms: Optional[int] = Field(None, ge=-MAX_EXPIRES_MS, le=MAX_EXPIRES_MS)
    expires_in_days: Optional[int] = Field(None, ge=1, le=MAX_EXPIRES_DAYS)
    password: Optional[str] = None

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    def resolved_expires_in_ms(self) -> Optional[int]:
        """Срок действия в миллисекундах; явное значение важнее дней"""
        if self.expires_in_ms is not None:
            return self.expires_in_ms
        if self.expires_in_days is not None:
            return self.expires_in_days * MS_PER_DAY
        return None


class ShareLinkResponse(BaseModel):
    """Схема для ответа с данными ссылки (без хеша пароля)"""
    id: str
    document_id: str
    issuer_id: str
    token: str
    permission: SharePermission
    expires_at: Optional[datetime] = None
    has_password: bool
    created_at: datetime
    access_count: int
    share_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ShareLinkAccessRequest(BaseModel):
    """Схема для входа по ссылке"""
    password: Optional[str] = None


class ActivityResponse(BaseModel):
    """Схема для записи журнала активности"""
    id: str
    document_id: str
    actor_id: str
    actor_name: str
    type: ActivityType
    description: str
    timestamp: datetime
    time_ago: str

    model_config = ConfigDict(from_attributes=True)
