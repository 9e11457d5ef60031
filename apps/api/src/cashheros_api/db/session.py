from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from cashheros_api.core.settings import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Concurrent writers queue on the database lock instead of failing fast.
        return {"connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, future=True, **_engine_options(url))


engine = build_engine(settings.database_url)

async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session
