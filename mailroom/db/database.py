"""
Engine, sessions and the declarative base.

The API and the long-running worker share the module-level engine. Celery
tasks each run on a fresh event loop and get an engine of their own from
get_task_session_factory.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from mailroom.core.config import settings


def _create_engine() -> AsyncEngine:
    options: dict = {"echo": settings.DEBUG, "pool_pre_ping": True}
    # SQLite has no server-side pool to size
    if not settings.DATABASE_URL.startswith("sqlite"):
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
        )
    return create_async_engine(settings.DATABASE_URL, **options)


def _sessions(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = _create_engine()
AsyncSessionLocal = _sessions(engine)

Base = declarative_base()


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request"""
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """For code that opens its own transactions (the delivery worker)"""
    return AsyncSessionLocal


@asynccontextmanager
async def get_task_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """A session factory on an engine bound to the running loop, disposed on exit"""
    task_engine = _create_engine()
    try:
        yield _sessions(task_engine)
    finally:
        await task_engine.dispose()


def utcnow() -> datetime:
    """Naive UTC; every DateTime column stores UTC without tzinfo"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
