"""
Database Session Management Module

Provides asynchronous database session management, supporting SQLite and PostgreSQL,
and request-scoped query executors built on those sessions.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from relstore.config import get_settings
from relstore.executor.sqlalchemy import SQLAlchemyQueryExecutor

# Get configuration
settings = get_settings()

# Create asynchronous database engine
# echo=True prints SQL statements when LOG_SQL is enabled
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.LOG_SQL,
    # SQLite specific configuration
    connect_args={"check_same_thread": False}
    if settings.DATABASE_TYPE == "sqlite"
    else {},
)

# Enable foreign keys for SQLite (relationships rely on them)
if settings.DATABASE_TYPE == "sqlite":
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

# Create asynchronous session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Table definitions shared by executors; unknown tables are reflected into it
metadata = MetaData()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Get database session

    Async generator over one session, for callers that manage the session
    themselves. Uses async with to ensure session is closed correctly.

    Yields:
        AsyncSession: Async database session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_executor(
    table_metadata: Optional[MetaData] = None,
) -> AsyncGenerator[SQLAlchemyQueryExecutor, None]:
    """
    Request-scoped query executor

    Each call opens its own session, so repositories built on the executor
    never share state with another request.

    Usage:
        async with get_executor() as executor:
            posts = PostRepository(executor)
            await posts.get({"order_by": {"id": "DESC"}})
    """
    async with AsyncSessionLocal() as session:
        try:
            yield SQLAlchemyQueryExecutor(
                session,
                metadata=table_metadata if table_metadata is not None else metadata,
            )
        except Exception:
            await session.rollback()
            raise


async def init_db(table_metadata: Optional[MetaData] = None) -> None:
    """
    Initialize Database

    Creates the tables defined in the given MetaData (the shared one by default).

    Note:
        In production, manage the schema with migrations instead.
    """
    target = table_metadata if table_metadata is not None else metadata
    async with engine.begin() as conn:
        await conn.run_sync(target.create_all)


async def dispose_engine() -> None:
    """Close every pooled connection."""
    await engine.dispose()
