import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from prompt_telemetry.config import settings

logger = logging.getLogger(__name__)

_engine = None
_AsyncSessionLocal = None


def _engine_options(database_url: str) -> dict[str, Any]:
    """Pool options for the configured backend.

    SQLite (local runs and tests) uses SQLAlchemy's default pool, which
    does not accept the sizing arguments used for Postgres.
    """
    if database_url.startswith("sqlite"):
        return {"echo": settings.debug}
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": settings.debug,
        "pool_use_lifo": True,
        "pool_reset_on_return": "rollback",
    }


def get_engine():
    """Get or create the async SQLAlchemy engine lazily."""
    global _engine
    if _engine is None:
        logger.info("Creating async database engine")
        _engine = create_async_engine(
            settings.database_url, **_engine_options(settings.database_url)
        )
    return _engine


def build_session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_local() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory shared by the API and the workers."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = build_session_factory(get_engine())
        logger.info("AsyncSessionLocal created successfully")
    return _AsyncSessionLocal


async def get_db():
    """Get async database session, the main FastAPI dependency."""
    AsyncSessionLocal = get_session_local()
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def dispose_engine():
    """Dispose of the database engine and close all connections."""
    global _engine, _AsyncSessionLocal
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _AsyncSessionLocal = None
