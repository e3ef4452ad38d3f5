"""
Snapshot store connection management

One async SQLite engine per process, opened in the app lifespan (or by tests)
and disposed on shutdown. Until init_db() runs, the session works purely in
memory and callers skip persistence (see is_initialized()).
"""
import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from iptv_engine.config import settings
from iptv_engine.models import Base

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA cache_size = -32000",
)


def _apply_pragmas(dbapi_conn, _connection_record) -> None:
    cursor = dbapi_conn.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def is_initialized() -> bool:
    """True once init_db() has opened the snapshot store."""
    return _session_factory is not None


async def init_db(database_path: str | None = None) -> None:
    """
    Open the snapshot store and create missing tables.

    Args:
        database_path: SQLite file (defaults to settings.database_path)
    """
    global _engine, _session_factory

    if _engine is not None:
        await close_db()

    path = database_path or settings.database_path
    logger.info(f"Opening snapshot store at {path}")

    _engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        connect_args={"timeout": 30},
    )
    event.listen(_engine.sync_engine, "connect", _apply_pragmas)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    _session_factory = async_sessionmaker(_engine, expire_on_commit=False, autoflush=False)
    logger.info("Snapshot store ready")


async def close_db() -> None:
    """Dispose the engine; persistence is off until the next init_db()."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Snapshot store closed")
    _engine = None
    _session_factory = None


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    """
    Database session wrapped in a transaction.

    Commits when the block exits normally, rolls back on error.

    Raises:
        RuntimeError: If init_db() has not run
    """
    if _session_factory is None:
        raise RuntimeError("Snapshot store not initialized. Call init_db() first.")

    async with _session_factory() as session:
        async with session.begin():
            yield session
