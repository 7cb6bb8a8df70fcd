from typing import Any, AsyncGenerator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from zenscribe.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Engine keyword arguments suited to the driver behind the URL"""
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG and settings.ENVIRONMENT == "development",
                             **engine_options(settings.DATABASE_URL))

# Objects stay readable after commit so routes can serialize them
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; uncommitted work is rolled back on close"""
    async with AsyncSessionLocal() as session:
        yield session
