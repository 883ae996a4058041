"""Fixtures for tests against a real PostgreSQL database.

Set TEST_DATABASE_URL (postgresql+asyncpg://...) to run them; they are
skipped otherwise. Each test gets its own schema, dropped afterwards.
"""

import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tablemin.config import EngineConfig
from tablemin.service import TableService

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")

SETUP_SQL = [
    """
    CREATE TABLE {schema}.widgets (
        id serial PRIMARY KEY,
        name varchar(40) NOT NULL,
        note text,
        price numeric(8, 2),
        tags jsonb,
        created_at timestamptz DEFAULT now()
    )
    """,
    """
    INSERT INTO {schema}.widgets (name, note, price)
    SELECT 'widget ' || i, CASE WHEN mod(i, 2) = 0 THEN 'note ' || i END, i * 1.5
    FROM generate_series(1, 30) AS i
    """,
    "CREATE TABLE {schema}.events (kind text, payload jsonb)",
    "INSERT INTO {schema}.events VALUES ('boot', '{{\"ok\": true}}')",
    'CREATE TABLE {schema}."odd:name" ("x:y" int PRIMARY KEY)',
]


@pytest_asyncio.fixture(scope="function")
async def pg_engine() -> AsyncGenerator[AsyncEngine, None]:
    if not TEST_DATABASE_URL:
        pytest.skip("TEST_DATABASE_URL not set")

    engine = create_async_engine(TEST_DATABASE_URL, pool_size=2, max_overflow=0)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (OperationalError, OSError) as exc:
        await engine.dispose()
        pytest.skip(f"PostgreSQL not reachable: {exc}")

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def pg_schema(pg_engine) -> AsyncGenerator[str, None]:
    """Fresh schema holding widgets (30 rows), events (no key) and "odd:name"."""
    schema = f"tablemin_test_{uuid.uuid4().hex[:8]}"
    async with pg_engine.begin() as conn:
        await conn.exec_driver_sql(f"CREATE SCHEMA {schema}")
        for statement in SETUP_SQL:
            await conn.exec_driver_sql(statement.format(schema=schema))

    yield schema

    async with pg_engine.begin() as conn:
        await conn.exec_driver_sql(f"DROP SCHEMA {schema} CASCADE")


@pytest.fixture
def pg_service(pg_engine, pg_schema) -> TableService:
    return TableService.from_engine(
        pg_engine, EngineConfig(schema=pg_schema, statement_timeout=10.0)
    )


@pytest.fixture
def pg_read_only_service(pg_engine, pg_schema) -> TableService:
    return TableService.from_engine(
        pg_engine,
        EngineConfig(schema=pg_schema, read_only=True, statement_timeout=10.0),
    )
