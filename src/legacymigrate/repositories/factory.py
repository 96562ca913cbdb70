"""
Progress store backend selection.

The backend follows the database URL:
- ``memory://``: in-memory repositories (dry runs, tests)
- ``sqlite+aiosqlite:///path.db``: SQLite through aiosqlite
- anything else: PostgreSQL through a SQLAlchemy async engine

Example:
    >>> async with open_progress_store("sqlite+aiosqlite:///progress.db") as store:
    ...     await store.spaces.get_failed_migrations()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import aiosqlite
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine

from legacymigrate.observability import Tracer
from legacymigrate.repositories.customer_progress import (
    CustomerProgressRepository,
    InMemoryCustomerProgressRepository,
    PostgreSQLCustomerProgressRepository,
    SQLiteCustomerProgressRepository,
)
from legacymigrate.repositories.schema import initialize_postgresql, initialize_sqlite
from legacymigrate.repositories.space_progress import (
    InMemorySpaceProgressRepository,
    PostgreSQLSpaceProgressRepository,
    SpaceProgressRepository,
    SQLiteSpaceProgressRepository,
)

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"


@dataclass(frozen=True)
class ProgressStore:
    """Space and customer repositories sharing one backend."""

    spaces: SpaceProgressRepository
    customers: CustomerProgressRepository
    backend: str


@asynccontextmanager
async def open_progress_store(
    database_url: str,
    *,
    initialize: bool = True,
    tracer: Tracer | None = None,
    enable_tracing: bool = True,
) -> AsyncIterator[ProgressStore]:
    """
    Open the progress store named by ``database_url``.

    Args:
        database_url: Backend URL.
        initialize: Create the progress tables if they do not exist.
        tracer: Optional custom Tracer instance shared by both repositories.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """
    if database_url in (MEMORY_URL, "memory"):
        yield ProgressStore(
            InMemorySpaceProgressRepository(tracer, enable_tracing),
            InMemoryCustomerProgressRepository(tracer, enable_tracing),
            backend="memory",
        )
        return

    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        path = url.database or ":memory:"
        logger.info("Opening SQLite progress store at %s", path)
        async with aiosqlite.connect(path) as connection:
            if initialize:
                await initialize_sqlite(connection)
            yield ProgressStore(
                SQLiteSpaceProgressRepository(connection, tracer, enable_tracing),
                SQLiteCustomerProgressRepository(connection, tracer, enable_tracing),
                backend="sqlite",
            )
        return

    logger.info("Opening PostgreSQL progress store at %s", url.render_as_string(hide_password=True))
    engine = create_async_engine(database_url)
    try:
        if initialize:
            await initialize_postgresql(engine)
        yield ProgressStore(
            PostgreSQLSpaceProgressRepository(engine, tracer, enable_tracing),
            PostgreSQLCustomerProgressRepository(engine, tracer, enable_tracing),
            backend="postgresql",
        )
    finally:
        await engine.dispose()


__all__ = [
    "MEMORY_URL",
    "ProgressStore",
    "open_progress_store",
]
