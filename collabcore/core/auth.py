from typing import Optional

from fastapi import Header, HTTPException, status

from collabcore.domains.collaboration.entities import Actor


async def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_avatar: Optional[str] = Header(None)
) -> Actor:
    """Пользователь из заголовков, выставленных шлюзом"""
    if not x_user_id or not x_user_name:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity headers"
        )

    return Actor(user_id=x_user_id, user_name=x_user_name, avatar=x_user_avatar or None)
