"""Async engine, session factory and declarative base for the recommendations DB."""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.config import get_settings

settings = get_settings()

# Request sessions are short: one profile load, a few candidate queries and
# at most one feedback write. Background jobs (embedding refresh, telemetry)
# take their own sessions through store_scope().
engine = create_async_engine(
    settings.database_url,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=False,
    pool_pre_ping=True,
    pool_recycle=300,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def init_db():
    """Create missing tables. Deployed databases are migrated with Alembic instead."""
    from app.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)


async def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session() as session:
        yield session


@asynccontextmanager
async def store_scope():
    """AnimeStore on its own session, for work that outlives a request session."""
    from app.db.anime_store import SQLAlchemyAnimeStore

    async with async_session() as session:
        yield SQLAlchemyAnimeStore(session)
