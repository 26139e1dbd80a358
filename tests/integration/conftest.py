import os
from collections.abc import AsyncGenerator

import pytest

from docinsight.config.settings import Settings
from docinsight.offline.connection import close_pool, ensure_schema, get_connection, init_pool
from docinsight.offline.postgres_store import PostgresJobStore


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "docinsight_test")
    return Settings(job_store="postgres")


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture
async def integration_pool(test_settings: Settings) -> AsyncGenerator[None, None]:
    try:
        await init_pool(test_settings)
    except Exception as e:
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to run.")
    try:
        await ensure_schema()
        async with get_connection() as conn:
            await conn.execute("DELETE FROM offline_jobs")
            await conn.commit()
        yield
    finally:
        await close_pool()


@pytest.fixture
async def postgres_store(integration_pool: None) -> PostgresJobStore:
    return PostgresJobStore()
