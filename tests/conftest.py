"""
Shared test configuration and fixtures for authstore tests.

Provides SQLite-backed engines, table setup, session makers and adapters used
across the adapter test files, plus the PostgreSQL database lifecycle used by
the tests that exercise real constraint-violation codes.
"""

import os
import uuid
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from social.graze.authstore.adapter import SQLAlchemyAdapter
from social.graze.authstore.config import TableNames
from social.graze.authstore.model.tables import AuthTables
from tests.test_helpers import create_tables, sqlite_engine


@pytest.fixture
def table_names() -> TableNames:
    return TableNames(user="auth_user", key="auth_key", session="auth_session")


@pytest.fixture
def database_path(tmp_path) -> Path:
    return tmp_path / "authstore.db"


@pytest_asyncio.fixture(scope="function")
async def engine(database_path):
    """Create an aiosqlite engine with foreign keys enforced."""
    engine = sqlite_engine(database_path)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def tables(engine, table_names) -> AuthTables:
    return await create_tables(engine, table_names)


@pytest.fixture
def database_session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def adapter(database_session_maker, tables) -> SQLAlchemyAdapter:
    return SQLAlchemyAdapter(database_session_maker, tables)


# PostgreSQL test configuration
TEST_DB_HOST = os.getenv("TEST_DB_HOST", "postgres")
TEST_DB_PORT = os.getenv("TEST_DB_PORT", "5432")
TEST_DB_USER = os.getenv("TEST_DB_USER", "postgres")
TEST_DB_PASSWORD = os.getenv("TEST_DB_PASSWORD", "password")

# Admin URL for database creation/deletion (connects to postgres database)
ADMIN_DATABASE_URL = f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@{TEST_DB_HOST}:{TEST_DB_PORT}/postgres"


async def check_postgres_available():
    """Check if PostgreSQL is available for testing."""
    try:
        admin_engine = create_async_engine(ADMIN_DATABASE_URL, echo=False)
        async with admin_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await admin_engine.dispose()
        return True
    except Exception:
        return False


@pytest_asyncio.fixture(scope="function")
async def postgres_database():
    """Create and clean up a PostgreSQL test database for each test function."""
    if not await check_postgres_available():
        pytest.skip("PostgreSQL database not available for testing")

    unique_db_name = f"authstore_test_{uuid.uuid4().hex[:8]}"
    unique_db_url = (
        f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@"
        f"{TEST_DB_HOST}:{TEST_DB_PORT}/{unique_db_name}"
    )

    admin_engine = create_async_engine(
        ADMIN_DATABASE_URL, echo=False, isolation_level="AUTOCOMMIT"
    )

    try:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"CREATE DATABASE {unique_db_name}"))

        yield unique_db_url

    finally:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"DROP DATABASE IF EXISTS {unique_db_name}"))
        await admin_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def postgres_adapter(postgres_database, table_names):
    """Adapter over freshly created tables in the PostgreSQL test database."""
    engine = create_async_engine(postgres_database, echo=False)
    tables = await create_tables(engine, table_names)

    yield SQLAlchemyAdapter(
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
        tables,
        isolation_level="REPEATABLE READ",
    )

    await engine.dispose()
