"""Async engine and session factory shared by the API and the scheduled jobs."""
from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from storeadmin.config import get_settings


def engine_options(database_url: str) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        # Jobs and requests write to the same file; wait on locks instead of failing
        return {"connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True}


settings = get_settings()
engine: AsyncEngine = create_async_engine(
    settings.database_url, echo=False, future=True, **engine_options(settings.database_url)
)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create every storeadmin table that does not exist yet."""

    from storeadmin import models  # registers every table on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session
