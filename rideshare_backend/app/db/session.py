"""
Database session configuration.

This module handles database engine creation and session management
using SQLAlchemy with async support for PostgreSQL (and SQLite for
local development and tests).
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from rideshare_backend.app.core.config import settings


def configure_sqlite_engine(async_engine: AsyncEngine) -> AsyncEngine:
    """
    Make every SQLite transaction take the database write lock up front.

    pysqlite/aiosqlite defer BEGIN until the first write, so two connections
    could both read a ride before either writes. Emitting BEGIN IMMEDIATE
    serializes whole transactions, which is what the lobby guards rely on
    (PostgreSQL gets the same effect from SELECT ... FOR UPDATE).
    """
    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        # Disable the driver's own BEGIN handling, we emit our own below.
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(async_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return async_engine


def build_engine(database_url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, applying SQLite transaction setup when needed."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"timeout": 30})
        return configure_sqlite_engine(create_async_engine(database_url, **kwargs))

    return create_async_engine(
        database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        **kwargs,
    )


# Create async engine
engine = build_engine(settings.database_url, echo=settings.db_echo)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Create declarative base for models
Base = declarative_base()


def get_session_factory() -> async_sessionmaker:
    """
    FastAPI dependency for the session factory.

    The lobby engine opens one session per transaction attempt, so it
    needs the factory rather than a single request-scoped session.
    """
    return AsyncSessionLocal

