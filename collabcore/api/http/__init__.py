from collabcore.api.http.health import router as health_router
from collabcore.api.http.collaboration import router as collaboration_router

__all__ = [
    "health_router",
    "collaboration_router"
]
