"""
Shared pytest fixtures for integration tests.

This module provides a PostgreSQL progress store using testcontainers for
automatic container management.

If testcontainers or Docker is not available, PostgreSQL tests are skipped.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from legacymigrate.repositories import (
    CUSTOMER_PROGRESS_TABLE,
    SPACE_PROGRESS_TABLE,
    initialize_postgresql,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


# ============================================================================
# Testcontainers Detection
# ============================================================================

TESTCONTAINERS_AVAILABLE = False

try:
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    PostgresContainer = None  # type: ignore[assignment, misc]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    import subprocess

    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()

skip_if_no_postgres_infra = pytest.mark.skipif(
    not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
    reason="PostgreSQL test infrastructure not available",
)


# ============================================================================
# PostgreSQL Fixtures
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Provide a PostgreSQL container for integration tests.

    The container is shared across all tests in the session.
    """
    if not TESTCONTAINERS_AVAILABLE or not DOCKER_AVAILABLE:
        pytest.skip("PostgreSQL testcontainer not available")

    container = PostgresContainer("postgres:15")
    container.start()

    yield container

    container.stop()


@pytest.fixture(scope="session")
def postgres_connection_url(postgres_container: Any) -> str:
    """Get an asyncpg connection URL from the container."""
    url = postgres_container.get_connection_url()
    return url.replace("postgresql://", "postgresql+asyncpg://").replace("psycopg2", "asyncpg")


@pytest_asyncio.fixture
async def postgres_engine(postgres_connection_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide an engine with the progress tables created and emptied.

    Tables are truncated after each test.
    """
    from sqlalchemy import text
    from sqlalchemy.ext.asyncio import create_async_engine

    engine = create_async_engine(postgres_connection_url, echo=False)
    await initialize_postgresql(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.execute(text(f"TRUNCATE TABLE {SPACE_PROGRESS_TABLE}"))
        await conn.execute(text(f"TRUNCATE TABLE {CUSTOMER_PROGRESS_TABLE}"))
    await engine.dispose()
