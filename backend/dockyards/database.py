"""Database initialization and ORM setup."""
from fastapi import Request
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
import logging

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _is_memory_url(url: str) -> bool:
    return url.startswith("sqlite") and (url.endswith("://") or ":memory:" in url)


def create_engine(database_url: str) -> AsyncEngine:
    """Create the async engine for the given URL.

    An in-memory SQLite database only lives as long as its connection, so
    every session shares one connection through a StaticPool.
    """
    if _is_memory_url(database_url):
        return create_async_engine(
            database_url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        database_url,
        echo=False,  # Disable SQL echo to prevent logging
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request) -> AsyncSession:
    """Dependency for getting an async database session."""
    session_factory = request.app.state.container.session_factory
    async with session_factory() as session:
        yield session


async def init_db(engine: AsyncEngine):
    """Initialize database tables."""
    logger.info(f"Initializing database: {engine.url.get_backend_name()}")

    try:
        # Import models to register with Base
        import dockyards.models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise
