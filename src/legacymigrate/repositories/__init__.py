"""
Progress store repositories.

Space and customer progress records, each with PostgreSQL, SQLite and
in-memory backends sharing one protocol.
"""

from legacymigrate.repositories.customer_progress import (
    DEFAULT_ASSIGN_BATCH_SIZE,
    CustomerProgressRepository,
    InMemoryCustomerProgressRepository,
    PostgreSQLCustomerProgressRepository,
    SQLiteCustomerProgressRepository,
)
from legacymigrate.repositories.factory import MEMORY_URL, ProgressStore, open_progress_store
from legacymigrate.repositories.schema import (
    CUSTOMER_PROGRESS_TABLE,
    SPACE_PROGRESS_TABLE,
    get_schema,
    initialize_postgresql,
    initialize_sqlite,
)
from legacymigrate.repositories.space_progress import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_STUCK_AFTER,
    InMemorySpaceProgressRepository,
    PostgreSQLSpaceProgressRepository,
    SpaceProgressRepository,
    SQLiteSpaceProgressRepository,
    check_transition,
)

__all__ = [
    # Space progress
    "SpaceProgressRepository",
    "PostgreSQLSpaceProgressRepository",
    "SQLiteSpaceProgressRepository",
    "InMemorySpaceProgressRepository",
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_STUCK_AFTER",
    "check_transition",
    # Customer progress
    "CustomerProgressRepository",
    "PostgreSQLCustomerProgressRepository",
    "SQLiteCustomerProgressRepository",
    "InMemoryCustomerProgressRepository",
    "DEFAULT_ASSIGN_BATCH_SIZE",
    # Schema
    "CUSTOMER_PROGRESS_TABLE",
    "SPACE_PROGRESS_TABLE",
    "get_schema",
    "initialize_postgresql",
    "initialize_sqlite",
    # Backend selection
    "MEMORY_URL",
    "ProgressStore",
    "open_progress_store",
]
