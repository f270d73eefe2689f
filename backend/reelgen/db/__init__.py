"""
Database module for reelgen.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from reelgen.db.engine import async_session, build_engine, build_session_factory, engine, shutdown
from reelgen.db.models import Base, Creator, VideoJob, VideoScript, DEFAULT_CREATOR_ID, DEFAULT_STORE_ID

logger = logging.getLogger(__name__)


async def _seed_default_creator(bound_engine: AsyncEngine) -> None:
    """Idempotent: ensure the default creator row exists."""
    session_factory = build_session_factory(bound_engine)
    async with session_factory() as session:
        result = await session.execute(select(Creator).where(Creator.id == DEFAULT_CREATOR_ID))
        if result.scalar_one_or_none() is None:
            session.add(Creator(
                id=DEFAULT_CREATOR_ID,
                name="default",
                default_store_id=DEFAULT_STORE_ID,
            ))
            await session.commit()
            logger.info(f"Seeded default creator {DEFAULT_CREATOR_ID}")


async def init_database(bound_engine: Optional[AsyncEngine] = None):
    """Initialize database schema on first run."""
    bound_engine = bound_engine or engine
    async with bound_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await _seed_default_creator(bound_engine)


__all__ = [
    "Base",
    "Creator",
    "VideoJob",
    "VideoScript",
    "engine",
    "async_session",
    "build_engine",
    "build_session_factory",
    "shutdown",
    "init_database",
]
