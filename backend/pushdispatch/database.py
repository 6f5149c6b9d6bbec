"""Engine and session factory for the device token store.

SQLite (aiosqlite) under ``DATA_PATH`` unless ``DATABASE_URL`` points at
PostgreSQL (asyncpg). Fan-out sends write token health in bursts, so SQLite
runs in WAL mode with a generous busy timeout.
"""
import logging
import os

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import settings, get_database_url, is_postgresql

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 30000

Base = declarative_base()


def _enable_sqlite_wal(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine with pooling suited to the backend behind ``url``."""
    if url.startswith("postgresql"):
        logger.info("Token store on PostgreSQL")
        return create_async_engine(
            url,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    logger.info("Token store on SQLite")
    engine = create_async_engine(
        url,
        pool_pre_ping=True,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT_MS // 1000},
    )
    _enable_sqlite_wal(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Records outlive their session; the store hands them back detached
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(get_database_url())
async_session = build_session_factory(engine)


async def create_tables(target: AsyncEngine) -> None:
    from . import models  # noqa: F401  (registers tables on Base.metadata)

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Create the data directory (SQLite) and the device token table."""
    if not is_postgresql():
        os.makedirs(settings.data_path, exist_ok=True)
    await create_tables(engine)


async def close_db():
    await engine.dispose()
