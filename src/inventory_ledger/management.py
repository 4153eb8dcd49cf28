"""Utility helpers for administrative tasks."""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from . import models  # noqa: F401  (registers the tables on Base.metadata)
from .alerts import check_low_stock
from .database import Base, SessionFactory, engine

logger = logging.getLogger(__name__)


async def init_database(db_engine: AsyncEngine | None = None) -> None:
    """Create database tables for the application."""

    engine_to_use = db_engine or engine
    async with engine_to_use.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def run_low_stock_sweep(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> int:
    """Raise alerts for low records never routed through a deduction."""

    factory = session_factory or SessionFactory
    async with factory() as session, session.begin():
        created = await check_low_stock(session)
    return len(created)


def cli_init_database() -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    asyncio.run(init_database())


def cli_low_stock_sweep() -> None:
    logging.basicConfig(level=logging.INFO)
    created = asyncio.run(run_low_stock_sweep())
    logger.info("Low stock sweep finished, %s alerts created", created)


if __name__ == "__main__":
    cli_init_database()
