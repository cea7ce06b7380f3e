from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from typing import Optional, List

from collabcore.core.auth import get_current_actor
from collabcore.core.exceptions import CommentValidationError, ShareLinkValidationError
from collabcore.domains.collaboration.entities import Activity, ActivityType, Actor, Comment, ShareLink
from collabcore.domains.collaboration.schemas import (
    CommentCreate, CommentUpdate, CommentResponse, CommentResolutionResponse,
    CommentCountResponse, ShareLinkCreate, ShareLinkResponse, ShareLinkAccessRequest,
    ActivityResponse
)
from collabcore.domains.collaboration.services import CollaborationService

router = APIRouter(prefix="/collaboration", tags=["collaboration"])


def get_collaboration_service(request: Request) -> CollaborationService:
    """Сервис, созданный при запуске приложения"""
    return request.app.state.collaboration_service


def _comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse.model_validate(comment)


def _share_link_response(link: ShareLink, service: CollaborationService) -> ShareLinkResponse:
    return ShareLinkResponse(
        id=link.id,
        document_id=link.document_id,
        issuer_id=link.issuer_id,
        token=link.token,
        permission=link.permission,
        expires_at=link.expires_at,
        has_password=link.has_password,
        created_at=link.created_at,
        access_count=link.access_count,
        share_url=service.share_url(link.token)
    )


def _activity_response(activity: Activity, service: CollaborationService) -> ActivityResponse:
    return ActivityResponse(
        id=activity.id,
        document_id=activity.document_id,
        actor_id=activity.actor_id,
        actor_name=activity.actor_name,
        type=activity.type,
        description=activity.description,
        timestamp=activity.timestamp,
        time_ago=service.time_ago(activity.timestamp)
    )


# Комментарии

@router.get("/documents/{document_id}/comments", response_model=List[CommentResponse])
async def get_comments(
    document_id: str,
    resolved: Optional[bool] = Query(None),
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Обсуждения документа с ответами; resolved фильтрует по состоянию"""
    comments = await service.get_comments(document_id, resolved=resolved)
    return [_comment_response(comment) for comment in comments]


@router.post(
    "/documents/{document_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_comment(
    document_id: str,
    comment_data: CommentCreate,
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Добавление комментария или ответа"""
    try:
        comment = await service.add_comment(
            document_id,
            actor.user_id,
            actor.user_name,
            comment_data.content,
            avatar=actor.avatar,
            selection=comment_data.selection.model_dump() if comment_data.selection else None,
            parent_id=comment_data.parent_id
        )
    except CommentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return _comment_response(comment)


@router.get("/documents/{document_id}/comments/count", response_model=CommentCountResponse)
async def get_comment_count(
    document_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Статистика комментариев"""
    count = await service.get_comment_count(document_id)
    return CommentCountResponse(total=count.total, resolved=count.resolved, unresolved=count.unresolved)


@router.put("/comments/{comment_id}", response_model=CommentResponse)
async def update_comment(
    comment_id: str,
    comment_data: CommentUpdate,
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Изменение текста комментария"""
    try:
        comment = await service.update_comment(comment_id, comment_data.content, actor_id=actor.user_id)
    except CommentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    if not comment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")

    return _comment_response(comment)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Удаление комментария вместе с ответами"""
    try:
        success = await service.delete_comment(comment_id, actor_id=actor.user_id)
    except PermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))

    if not success:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")


@router.post("/comments/{comment_id}/resolve", response_model=CommentResolutionResponse)
async def toggle_comment_resolution(
    comment_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Разрешение или повторное открытие обсуждения"""
    try:
        resolved = await service.toggle_comment_resolution(
            comment_id,
            actor_id=actor.user_id,
            actor_name=actor.user_name
        )
    except CommentValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if resolved is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comment not found")

    return CommentResolutionResponse(comment_id=comment_id, resolved=resolved)


# Ссылки доступа

@router.get("/documents/{document_id}/share-links", response_model=List[ShareLinkResponse])
async def get_share_links(
    document_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Ссылки доступа к документу"""
    links = await service.get_share_links(document_id)
    return [_share_link_response(link, service) for link in links]


@router.post(
    "/documents/{document_id}/share-links",
    response_model=ShareLinkResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_share_link(
    document_id: str,
    link_data: ShareLinkCreate,
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Создание ссылки доступа"""
    try:
        link = await service.create_share_link(
            document_id,
            actor.user_id,
            link_data.permission,
            expires_in_ms=link_data.resolved_expires_in_ms(),
            password=link_data.password,
            issuer_name=actor.user_name
        )
    except ShareLinkValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return _share_link_response(link, service)


@router.delete("/share-links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_share_link(
    link_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Отзыв ссылки доступа"""
    success = await service.revoke_share_link(link_id)
    if not success:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Share link not found")


@router.post("/share-links/{token}/access", response_model=ShareLinkResponse)
async def access_share_link(
    token: str,
    access_data: Optional[ShareLinkAccessRequest] = None,
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Вход по ссылке доступа"""
    password = access_data.password if access_data else None
    link = await service.access_share_link(token, password)

    # Причина отказа наружу не сообщается
    if link is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    return _share_link_response(link, service)


# Журнал активности

@router.get("/documents/{document_id}/activity", response_model=List[ActivityResponse])
async def get_activity(
    document_id: str,
    limit: Optional[int] = Query(None, ge=1, le=100),
    activity_type: Optional[ActivityType] = Query(None, alias="type"),
    actor: Actor = Depends(get_current_actor),
    service: CollaborationService = Depends(get_collaboration_service)
):
    """Последние события документа"""
    entries = await service.get_activity(document_id, limit=limit, activity_type=activity_type)
    return [_activity_response(entry, service) for entry in entries]
