from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from allowance.core.config import settings


def get_async_database_url(url: str) -> str:
    """Rewrite plain Postgres URLs to the asyncpg driver form.

    Hosted Postgres providers hand out postgres:// URLs; the async engine
    needs postgresql+asyncpg://. Other URLs (sqlite+aiosqlite for local
    runs) pass through untouched.
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def engine_options(url: str) -> dict[str, Any]:
    """Keyword arguments for create_async_engine, per backend."""
    options: dict[str, Any] = {"echo": settings.debug}
    if url.startswith("sqlite"):
        # Background badge tasks use their own connections alongside request sessions
        options["connect_args"] = {"timeout": 30}
    else:
        options["pool_pre_ping"] = True
    return options


database_url = get_async_database_url(settings.database_url)

engine = create_async_engine(database_url, **engine_options(database_url))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session for the activity endpoints."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()
