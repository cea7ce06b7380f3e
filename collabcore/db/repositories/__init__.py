from collabcore.db.repositories.collaboration_repository import (
    CommentRepository, ShareLinkRepository, ActivityRepository
)

__all__ = [
    "CommentRepository",
    "ShareLinkRepository",
    "ActivityRepository"
]
