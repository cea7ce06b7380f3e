import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from collabcore.api.http.health import router as health_router
from collabcore.api.http.collaboration import router as collaboration_router
from collabcore.core.config import get_settings
from collabcore.core.exceptions import StorageError
from collabcore.domains.collaboration.services import CollaborationService
from collabcore.infrastructure.storage import create_storage

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage = create_storage(settings)
    await storage.init()
    app.state.collaboration_service = CollaborationService(storage, settings)
    logger.info(f"[App] Started with {settings.storage_backend} storage")

    yield

    await storage.close()
    logger.info("[App] Storage closed")


app = FastAPI(
    title=settings.app_name,
    description="Комментарии, ссылки доступа и журнал активности для совместной работы с документами",
    version="1.0.0",
    lifespan=lifespan
)

# Настройка CORS для работы с frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"[App] Storage failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage unavailable"}
    )


# Подключаем роутеры
app.include_router(health_router)
app.include_router(collaboration_router)


@app.get("/")
async def root():
    """Корневой эндпоинт"""
    return {
        "message": f"{settings.app_name} API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }
