"""
SQL schema for the progress store.

Two tables, one per progress granularity:
- migration_space_progress: one row per (customer, space)
- migration_customer_progress: one row per customer

PostgreSQL stores timestamps as TIMESTAMPTZ; SQLite stores them as ISO 8601
TEXT in UTC, which keeps string comparison chronological.

Example:
    >>> async with aiosqlite.connect("progress.db") as db:
    ...     await initialize_sqlite(db)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from sqlalchemy import text

if TYPE_CHECKING:
    import aiosqlite
    from sqlalchemy.ext.asyncio import AsyncEngine

Dialect = Literal["postgresql", "sqlite"]

SPACE_PROGRESS_TABLE = "migration_space_progress"
CUSTOMER_PROGRESS_TABLE = "migration_customer_progress"

_TIMESTAMP = {"postgresql": "TIMESTAMPTZ", "sqlite": "TEXT"}


def get_schema(dialect: Dialect = "postgresql") -> list[str]:
    """
    DDL statements for both progress tables.

    Args:
        dialect: Target database dialect.

    Returns:
        Statements in execution order; each is idempotent.
    """
    ts = _TIMESTAMP[dialect]
    return [
        f"""
        CREATE TABLE IF NOT EXISTS {SPACE_PROGRESS_TABLE} (
            customer TEXT NOT NULL,
            space TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            total_uploads INTEGER NOT NULL DEFAULT 0,
            completed_uploads INTEGER NOT NULL DEFAULT 0,
            last_processed_upload TEXT,
            instance_id TEXT,
            worker_id TEXT,
            error TEXT,
            created_at {ts} NOT NULL,
            updated_at {ts} NOT NULL,
            PRIMARY KEY (customer, space)
        )
        """,
        f"CREATE INDEX IF NOT EXISTS idx_space_progress_status "
        f"ON {SPACE_PROGRESS_TABLE} (status, updated_at)",
        f"CREATE INDEX IF NOT EXISTS idx_space_progress_instance "
        f"ON {SPACE_PROGRESS_TABLE} (instance_id)",
        f"""
        CREATE TABLE IF NOT EXISTS {CUSTOMER_PROGRESS_TABLE} (
            customer TEXT PRIMARY KEY,
            status TEXT NOT NULL DEFAULT 'pending',
            total_spaces INTEGER NOT NULL DEFAULT 0,
            completed_spaces INTEGER NOT NULL DEFAULT 0,
            total_uploads INTEGER NOT NULL DEFAULT 0,
            completed_uploads INTEGER NOT NULL DEFAULT 0,
            instance_id TEXT,
            filter TEXT,
            error TEXT,
            assigned_at {ts},
            updated_at {ts} NOT NULL,
            completed_at {ts}
        )
        """,
        f"CREATE INDEX IF NOT EXISTS idx_customer_progress_status "
        f"ON {CUSTOMER_PROGRESS_TABLE} (status)",
        f"CREATE INDEX IF NOT EXISTS idx_customer_progress_instance "
        f"ON {CUSTOMER_PROGRESS_TABLE} (instance_id)",
    ]


async def initialize_sqlite(connection: aiosqlite.Connection) -> None:
    """Create the progress tables in a SQLite database."""
    for statement in get_schema("sqlite"):
        await connection.execute(statement)
    await connection.commit()


async def initialize_postgresql(engine: AsyncEngine) -> None:
    """Create the progress tables in a PostgreSQL database."""
    async with engine.begin() as conn:
        for statement in get_schema("postgresql"):
            await conn.execute(text(statement))


__all__ = [
    "CUSTOMER_PROGRESS_TABLE",
    "SPACE_PROGRESS_TABLE",
    "get_schema",
    "initialize_postgresql",
    "initialize_sqlite",
]
