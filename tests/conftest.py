"""
Test Configuration Module
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from relstore.executor.sqlalchemy import SQLAlchemyQueryExecutor
from relstore.query.builder import QueryBuilder


# Use in-memory database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("email", String(200), nullable=True),
    Column("age", Integer, nullable=True),
    Column("status", String(20), nullable=True),
)

profiles = Table(
    "profiles",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("bio", String(200)),
)

posts = Table(
    "posts",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("title", String(200), nullable=False),
)

comments = Table(
    "comments",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("post_id", Integer, nullable=False),
    Column("body", String(500), nullable=False),
)

tags = Table(
    "tags",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(50), nullable=False, unique=True),
)

post_tags = Table(
    "post_tags",
    metadata,
    Column("post_id", Integer, primary_key=True),
    Column("tag_id", Integer, primary_key=True),
)


@pytest_asyncio.fixture
async def async_engine():
    """Create async database engine for testing"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    # Clean up
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing"""
    async_session = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def executor(db_session) -> SQLAlchemyQueryExecutor:
    """Executor bound to the test tables, reflection disabled"""
    return SQLAlchemyQueryExecutor(db_session, metadata=metadata, reflect=False)


@pytest_asyncio.fixture
async def seeded(executor) -> SQLAlchemyQueryExecutor:
    """Executor over a small blog schema with related rows"""
    await executor.insert_batch(
        "users",
        [
            {"id": 1, "name": "alice", "email": "alice@example.com", "age": 34, "status": "active"},
            {"id": 2, "name": "bob", "email": None, "age": 27, "status": "active"},
            {"id": 3, "name": "carol", "email": "carol@example.com", "age": 41, "status": "banned"},
        ],
    )
    await executor.insert_batch("profiles", [{"id": 1, "user_id": 1, "bio": "writes about databases"}])
    await executor.insert_batch(
        "posts",
        [
            {"id": 10, "user_id": 1, "title": "Query builders"},
            {"id": 11, "user_id": 1, "title": "Pivot tables"},
            {"id": 12, "user_id": 2, "title": "Hello"},
        ],
    )
    await executor.insert_batch(
        "comments",
        [
            {"id": 100, "post_id": 10, "body": "nice"},
            {"id": 101, "post_id": 10, "body": "thanks"},
            {"id": 102, "post_id": 11, "body": "more please"},
        ],
    )
    await executor.insert_batch(
        "tags",
        [{"id": 1, "name": "python"}, {"id": 2, "name": "sql"}, {"id": 3, "name": "rust"}],
    )
    await executor.insert_batch(
        "post_tags",
        [{"post_id": 10, "tag_id": 1}, {"post_id": 10, "tag_id": 3}, {"post_id": 11, "tag_id": 2}],
    )
    return executor


@pytest.fixture(autouse=True)
def fresh_query_builder():
    """Drop filters registered on the shared builder by a previous test"""
    QueryBuilder.reset()
    yield
    QueryBuilder.reset()
