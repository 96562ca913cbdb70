"""
Shared pytest fixtures for the legacymigrate tests.

This module provides:
- Fake remote systems (world, collaborators)
- Run configuration tuned for tests (no inter-upload delay, tmp results dir)
- Progress store fixtures (in-memory and SQLite repositories)
- Tracer fixtures (mock_tracer)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio

from legacymigrate.config import MigrationConfig, PlannerConfig
from legacymigrate.observability import MockTracer
from legacymigrate.protocols import Collaborators
from legacymigrate.repositories import (
    InMemoryCustomerProgressRepository,
    InMemorySpaceProgressRepository,
    SQLiteCustomerProgressRepository,
    SQLiteSpaceProgressRepository,
    initialize_sqlite,
)
from tests.fixtures import FakeWorld


# =============================================================================
# Fake remote systems
# =============================================================================


@pytest.fixture
def world() -> FakeWorld:
    """Provide an empty fake world; tests register the uploads they need."""
    return FakeWorld()


@pytest.fixture
def collaborators(world: FakeWorld) -> Collaborators:
    return world.collaborators()


# =============================================================================
# Configuration
# =============================================================================


@pytest.fixture
def config(tmp_path: Path) -> MigrationConfig:
    """
    Run configuration for tests.

    No delay between uploads, a small checkpoint interval and results
    written under the test's tmp_path.
    """
    return MigrationConfig(
        checkpoint_interval=2,
        upload_delay_s=0,
        results_dir=tmp_path / "logs",
    )


@pytest.fixture
def planner_config(tmp_path: Path) -> PlannerConfig:
    return PlannerConfig(
        segments=3,
        customer_concurrency=2,
        checkpoint_every_batches=1,
        state_dir=tmp_path / "migration-state",
    )


# =============================================================================
# Progress store
# =============================================================================


@pytest.fixture
def space_repo() -> InMemorySpaceProgressRepository:
    return InMemorySpaceProgressRepository(enable_tracing=False)


@pytest.fixture
def customer_repo() -> InMemoryCustomerProgressRepository:
    return InMemoryCustomerProgressRepository(enable_tracing=False)


@pytest_asyncio.fixture
async def sqlite_connection() -> AsyncGenerator[aiosqlite.Connection, None]:
    """
    Provide an aiosqlite connection to an initialized in-memory database.

    The connection is closed after the test.
    """
    conn = await aiosqlite.connect(":memory:")
    await initialize_sqlite(conn)
    yield conn
    await conn.close()


@pytest.fixture
def sqlite_space_repo(sqlite_connection: aiosqlite.Connection) -> SQLiteSpaceProgressRepository:
    return SQLiteSpaceProgressRepository(sqlite_connection, enable_tracing=False)


@pytest.fixture
def sqlite_customer_repo(
    sqlite_connection: aiosqlite.Connection,
) -> SQLiteCustomerProgressRepository:
    return SQLiteCustomerProgressRepository(sqlite_connection, enable_tracing=False)


# =============================================================================
# Tracing
# =============================================================================


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Provide a MockTracer that records span names and attributes."""
    return MockTracer()
