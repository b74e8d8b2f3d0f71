import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storeadmin import models
from storeadmin.config import Settings, get_settings
from storeadmin.db import get_session
from storeadmin.main import create_app
from storeadmin.services.email_providers import EmailProvider, get_email_provider


class RecordingProvider(EmailProvider):
    name = "recording"

    def __init__(self, sender: str = "shop@storeadmin.test"):
        super().__init__(sender)
        self.messages = []

    async def send(self, to, subject, body):
        self.messages.append({"to": to, "subject": subject, "body": body})
        return await super().send(to, subject, body)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool, future=True)
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        scheduler_enabled=False,
        analytics_retention_days=30,
        amazon_associate_tag="testtag-20",
    )


@pytest_asyncio.fixture
async def client(session_factory, provider, test_settings):
    async def override_session():
        async with session_factory() as session:
            yield session

    def override_settings():
        return test_settings

    def override_provider():
        return provider

    app = create_app(override_settings=test_settings, skip_db_init=True)
    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = override_settings
    app.dependency_overrides[get_email_provider] = override_provider

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
