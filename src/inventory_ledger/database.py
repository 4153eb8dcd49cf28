"""Database initialization helpers."""
from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import Settings, get_settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def _timeout_connect_args(database_url: str, timeout: float) -> dict[str, Any]:
    driver = make_url(database_url).drivername
    if driver.startswith("sqlite"):
        # busy timeout: how long a writer waits on a locked database
        return {"timeout": timeout}
    if driver.endswith("asyncpg"):
        return {"command_timeout": timeout}
    return {}


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create a configured SQLAlchemy async engine."""

    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.echo_sql,
        connect_args=_timeout_connect_args(
            settings.database_url, settings.storage_timeout_seconds
        ),
    )


def create_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


engine = create_engine()
SessionFactory = create_session_factory(engine)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the factory ledger operations open sessions from."""

    return SessionFactory


async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield an :class:`AsyncSession` for FastAPI dependencies."""

    async with SessionFactory() as session:
        yield session


__all__ = [
    "Base",
    "engine",
    "SessionFactory",
    "create_engine",
    "create_session_factory",
    "get_session",
    "get_session_factory",
]
