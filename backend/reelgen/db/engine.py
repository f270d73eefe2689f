"""Async SQLAlchemy engine and session factory.

The module-level engine targets ``storage.database_url``; tests build their
own through build_engine() against a temporary file.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reelgen.config import settings

# WAL lets the API read progress while a worker writes; busy_timeout in ms
SQLITE_PRAGMAS = (
    "journal_mode=WAL",
    "synchronous=FULL",
    "foreign_keys=ON",
    "busy_timeout=5000",
)


def _apply_pragmas(dbapi_conn, _connection_record):
    cursor = dbapi_conn.cursor()
    try:
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(f"PRAGMA {pragma}")
    finally:
        cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an engine; SQLite connections get SQLITE_PRAGMAS on connect."""
    created = create_async_engine(database_url, echo=False)
    if created.dialect.name == "sqlite":
        # aiosqlite only exposes connect events on the sync engine
        event.listen(created.sync_engine, "connect", _apply_pragmas)
    return created


def build_session_factory(bound_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows stay readable after commit; lazy refresh would need a greenlet
    return async_sessionmaker(bound_engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.storage.database_url)
async_session = build_session_factory(engine)


async def shutdown():
    """Close pooled connections."""
    await engine.dispose()
