"""
Async engine, session factory and the request-scoped session dependency.

Workflow operations commit their own unit of work; the dependency only
closes the session and rolls back whatever an aborted request left open.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from taskflow.core.config import get_settings


def make_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(url, echo=echo, pool_pre_ping=not url.startswith("sqlite"))


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows stay readable after commit; side effects run after the write
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


settings = get_settings()
engine = make_engine(settings.database_url, echo=settings.debug)
async_session_factory = make_session_factory(engine)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Create missing tables. Used for local runs and tests."""
    import taskflow.models  # noqa: F401  (populate metadata)

    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
