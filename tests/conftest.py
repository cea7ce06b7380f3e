"""Общие fixture для тестов

- управляемые часы
- хранилище в памяти и сервис поверх него
- HTTP клиент с подмененным сервисом
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from collabcore.api.http.collaboration import get_collaboration_service
from collabcore.core.config import Settings
from collabcore.domains.collaboration.services import CollaborationService
from collabcore.infrastructure.storage import InMemoryStorage
from collabcore.main import app


class FakeClock:
    """Часы, которые двигаются только вручную"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_backend="memory",
        activity_retention=100,
        activity_default_limit=20,
        frontend_base_url="https://docs.example.com",
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def service(storage, settings, clock) -> CollaborationService:
    return CollaborationService(storage, settings, clock=clock)


@pytest.fixture
def actor_headers() -> dict:
    return {"X-User-Id": "user-1", "X-User-Name": "Alice"}


@pytest.fixture
def other_actor_headers() -> dict:
    return {"X-User-Id": "user-2", "X-User-Name": "Bob"}


@pytest.fixture
async def async_client(service):
    """HTTP клиент; lifespan не запускается, сервис подменяется"""
    app.dependency_overrides[get_collaboration_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
