# ABOUTME: Database engine and async session factory.
# ABOUTME: Manages SQLAlchemy async engine lifecycle, table creation, and SQLite pragmas.

from contextlib import contextmanager

import structlog
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from feed_tune.config import get_settings
from feed_tune.db.models import Base
from feed_tune.errors import StorageError

log = structlog.get_logger()

_engine = None
_session_factory = None


def _on_sqlite_connect(dbapi_connection, _connection_record) -> None:
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(conn) -> None:
    # Take the write lock up front; concurrent refreshes otherwise deadlock on lock upgrade
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, **engine_kwargs) -> AsyncEngine:
    """Create an async engine; on SQLite, enforce foreign keys and real savepoints."""
    engine = create_async_engine(database_url, echo=False, **engine_kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _on_sqlite_connect)
        event.listen(engine.sync_engine, "begin", _on_sqlite_begin)
    return engine


@contextmanager
def storage_errors(action: str):
    """Re-wrap unexpected SQLAlchemy failures as StorageError."""
    try:
        yield
    except SQLAlchemyError as e:
        log.error("storage_error", action=action, error=str(e))
        raise StorageError(f"Storage failure while {action}") from e


def get_engine() -> AsyncEngine:
    """Get or create the async engine."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def init_db() -> None:
    """Create all tables if they don't exist."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("database_initialized", url=get_settings().database_url)


async def close_db() -> None:
    """Dispose of the engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        log.info("database_closed")
