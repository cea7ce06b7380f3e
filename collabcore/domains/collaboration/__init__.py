from collabcore.domains.collaboration.entities import (
    Actor, Activity, ActivityType, Comment, CommentCount, CommentSelection,
    SharePermission, ShareLink, MAX_THREAD_DEPTH
)
from collabcore.domains.collaboration.mentions import extract_mentions
from collabcore.domains.collaboration.schemas import (
    CommentSelectionSchema, CommentCreate, CommentUpdate, CommentResponse,
    CommentResolutionResponse, CommentCountResponse, ShareLinkCreate,
    ShareLinkResponse, ShareLinkAccessRequest, ActivityResponse
)
from collabcore.domains.collaboration.services import (
    ActivityLog, CommentStore, ShareLinkManager, CollaborationService, time_ago
)

__all__ = [
    "Actor", "Activity", "ActivityType", "Comment", "CommentCount", "CommentSelection",
    "SharePermission", "ShareLink", "MAX_THREAD_DEPTH",
    "extract_mentions",
    "CommentSelectionSchema", "CommentCreate", "CommentUpdate", "CommentResponse",
    "CommentResolutionResponse", "CommentCountResponse", "ShareLinkCreate",
    "ShareLinkResponse", "ShareLinkAccessRequest", "ActivityResponse",
    "ActivityLog", "CommentStore", "ShareLinkManager", "CollaborationService", "time_ago"
]
