"""
Database Connection Manager
===========================

Handles the async connection to the per-user SQLite database and the
unit-of-work helper used by every write path.
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ticketmemory.classifier import TextClassifier
from ticketmemory.db.models import Base, LegacyTicketContextRecord, SessionRecord, TicketContextRecord
from ticketmemory.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Global session maker
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None
_engine: Optional[AsyncEngine] = None
_db_path: Optional[Path] = None


async def _create_schema(engine: AsyncEngine) -> bool:
    """
    Create the sessions and categorized tables.

    Falls back to the legacy flat table when the categorized one cannot be
    created. Returns whether the categorized table is usable.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=[SessionRecord.__table__])

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, tables=[TicketContextRecord.__table__])
        return True
    except SQLAlchemyError as e:
        logger.debug("Failed to create categorized context table: %s", e)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all, tables=[LegacyTicketContextRecord.__table__])
        return False


async def init_db(
    db_path: Path,
    *,
    classifier: Optional[TextClassifier] = None,
    migrate: bool = True,
) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the database connection and create tables if they don't exist.

    Parent directories are created as needed. Any legacy rows are migrated into
    the categorized table unless ``migrate`` is False.
    """
    global _async_session_maker, _engine, _db_path

    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageUnavailableError(f"Cannot create {db_path.parent}: {e}") from e

    db_url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(db_url, echo=False)

    try:
        categorized = await _create_schema(engine)
    except SQLAlchemyError as e:
        await engine.dispose()
        raise StorageUnavailableError(f"Cannot open database {db_path}: {e}") from e

    _engine = engine
    _db_path = db_path
    _async_session_maker = async_sessionmaker(_engine, expire_on_commit=False)

    if migrate and categorized:
        from ticketmemory.store import migrate_legacy

        migrated = await run_in_transaction(lambda session: migrate_legacy(session, classifier))
        if migrated:
            logger.debug("Migrated %d legacy ticket(s)", migrated)

    return _async_session_maker


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the configured session maker."""
    if _async_session_maker is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_maker


async def table_exists(name: str) -> bool:
    if _engine is None:
        return False
    async with _engine.connect() as conn:
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(name))


async def run_in_transaction(operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """
    Unit of work: run ``operation`` inside one transaction.

    Commits when the operation returns and rolls back (re-raising) when it
    raises, so a session row is never recorded without its annotations.
    """
    maker = get_session_maker()
    async with maker() as session:
        async with session.begin():
            return await operation(session)


async def vacuum() -> None:
    """Reclaim free pages after large deletions."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    async with _engine.connect() as conn:
        conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
        await conn.execute(text("VACUUM"))


async def drop_all() -> None:
    """Drop every table and recreate the empty schema."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await _create_schema(_engine)


async def close_db() -> None:
    """Dispose of the engine and forget the session maker."""
    global _async_session_maker, _engine, _db_path

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _db_path = None
    _async_session_maker = None
