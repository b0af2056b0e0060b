from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    AsyncAttrs,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from app.config.config import settings


class Base(AsyncAttrs, DeclarativeBase):
    pass


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Build an async engine; sqlite gets no pool sizing, in-memory sqlite a shared connection."""
    if url.startswith("sqlite"):
        if url.rstrip("/").endswith(":memory:") or url.endswith("://"):
            return create_async_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = create_engine_for(settings.DATABASE_URL, echo=settings.DEBUG)
async_session = create_session_factory(engine)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Create every table known to the metadata"""
    # Register the mapped classes on Base.metadata
    import app.models.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_db_context(
    session_factory: async_sessionmaker[AsyncSession] = async_session,
) -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions"""
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
